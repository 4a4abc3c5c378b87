# agentgate package init
import logging
import os

# Every module logs under the "agentgate" namespace regardless of how the
# package is imported (``src.agentgate`` in tests and the uvicorn entry point).
LOGGER_LEVEL_ENV = {
    "agentgate.sessions": "AGENTGATE_SESSION_LOG_LEVEL",
    "agentgate.llm": "AGENTGATE_LLM_LOG_LEVEL",
    "agentgate.chat": "AGENTGATE_CHAT_LOG_LEVEL",
    "agentgate.events": "AGENTGATE_EVENTS_LOG_LEVEL",
}


def _level(name, default):
    if not name:
        return default
    return logging.getLevelNamesMapping().get(name.strip().upper(), default)


def configure_logging() -> None:
    """Attach the console handler to ``agentgate`` and apply per-area levels."""
    base = _level(os.getenv("AGENTGATE_LOG_LEVEL"), logging.INFO)
    root = logging.getLogger("agentgate")
    if not any(getattr(h, "_agentgate", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[AGENTGATE][%(levelname)s] %(name)s: %(message)s"))
        handler._agentgate = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(base)

    for name, env_var in LOGGER_LEVEL_ENV.items():
        override = os.getenv(env_var)
        logging.getLogger(name).setLevel(_level(override, logging.NOTSET))


configure_logging()
