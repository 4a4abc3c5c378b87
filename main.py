import logging
import os

import uvicorn
from dotenv import load_dotenv

logger = logging.getLogger("agentgate")


def main() -> None:
    load_dotenv()
    port = int(os.getenv("PORT", "3002"))
    host = os.getenv("HOST", "0.0.0.0")
    logger.info("Server is running on port %d", port)
    uvicorn.run("src.agentgate.api.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
