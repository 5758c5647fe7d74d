"""OpenWork CLI: headless driver for an OpenCode-compatible server."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / ".openwork" / "logs"


def _configure_logging(level_name: str, log_dir: Path = LOG_DIR) -> Path:
    """Root logger → rotating file + stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "openwork.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _load_config(args):
    from openwork.engine.config import SyncConfig
    from openwork.engine.yaml_config import discover_config_path, load_yaml_config

    config = SyncConfig.from_env()
    config_path = args.config
    if not config_path:
        discovered = discover_config_path(Path.cwd())
        config_path = str(discovered) if discovered else None
    if config_path:
        config = load_yaml_config(config_path, base=config)
    _apply_log_level(config.log_level)
    return config


def _apply_log_level(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        logger.warning("Unknown log level %r; keeping %s", level_name,
                       logging.getLevelName(logging.getLogger().level))
        return
    logging.getLogger().setLevel(level)


def _parse_reply(raw: str) -> tuple[str, str]:
    request_id, sep, reply = raw.rpartition(":")
    if not sep or not request_id or not reply:
        raise ValueError(f"expected REQUEST_ID:once|always|reject, got {raw!r}")
    return request_id, reply


def _print_event(event) -> None:
    props = event.props
    detail = ""
    if "info" in props and isinstance(props["info"], dict):
        detail = props["info"].get("id", "")
    elif "sessionID" in props:
        detail = props["sessionID"]
    print(f"{event.type} {detail}".rstrip(), flush=True)


def _session_summary(state) -> str:
    from openwork.shared.models.todo import todo_progress

    session = state.selected_session
    title = session.title if session else state.selected_session_id
    line = f"{title} [{state.status_of(state.selected_session_id).value}] {len(state.messages)} messages"
    done, total = todo_progress(state.todos)
    if total:
        line += f", todos {done}/{total}"
    return line


async def _run(args) -> int:
    from openwork.adapters.bridge import ServerBridge
    from openwork.engine.config import DEFAULT_BASE_URL
    from openwork.shared.models.model_ref import format_model_label, parse_model_ref
    from openwork.shared.services.preferences import UserPreferences

    config = _load_config(args)
    preferences = UserPreferences.load()

    if args.set_default_model:
        model = parse_model_ref(args.set_default_model)
        if model is None:
            print(f"Invalid model {args.set_default_model!r}; expected provider/model")
            return 2
        preferences.set_default_model(model)
        print(f"Default model: {format_model_label(model)}")
        if not (args.list or args.prompt or args.watch or args.session or args.reply):
            return 0

    # Explicit settings (flag, env, YAML) beat the remembered server.
    configured = config.base_url if config.base_url != DEFAULT_BASE_URL else None
    base_url = args.base_url or configured or preferences.last_base_url or config.base_url
    directory = args.directory or config.directory or preferences.client_directory or None

    bridge = ServerBridge(config=config, preferences=preferences)
    if not await bridge.connect(base_url, directory):
        print(f"Could not connect to {base_url}: {bridge.state.error}")
        return 1
    print(bridge.status_line)

    try:
        if args.list:
            if not bridge.state.sessions:
                print("No sessions.")
            for session in bridge.state.sessions:
                status = bridge.state.status_of(session.id).value
                print(f"  {session.id}  [{status}]  {session.title}")
            return 0

        if args.reply:
            request_id, reply = _parse_reply(args.reply)
            await bridge.reply_permission(request_id, reply)
            print(f"Replied {reply} to {request_id}")

        if args.session:
            await bridge.select_session(args.session)
            print(_session_summary(bridge.state))
        elif args.prompt:
            await bridge.create_session()

        if args.model:
            model = parse_model_ref(args.model)
            if model is None:
                print(f"Invalid model {args.model!r}; expected provider/model")
                return 2
            bridge.set_session_model(model)

        if args.prompt:
            model = await bridge.send_prompt(args.prompt)
            print(f"Sent to {bridge.state.selected_session_id} ({format_model_label(model)})")

        if args.watch:
            bridge.add_listener(_print_event)
            await bridge.wait_closed()
            print(f"Event stream closed: {bridge.state.error or 'server ended the stream'}")
        return 0
    finally:
        await bridge.disconnect()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="openwork",
        description="OpenWork: drive an OpenCode server from the terminal",
    )
    parser.add_argument("--base-url", metavar="URL", help="Server URL (default: last used)")
    parser.add_argument("--directory", metavar="PATH", help="Project directory on the server")
    parser.add_argument("--config", metavar="PATH", help="YAML config file")
    parser.add_argument(
        "--list", action="store_true",
        help="List sessions and exit",
    )
    parser.add_argument("--session", metavar="ID", help="Select an existing session")
    parser.add_argument(
        "--prompt", metavar="TEXT",
        help="Send a prompt to the selected session (creates one if none is selected)",
    )
    parser.add_argument(
        "--model", metavar="PROVIDER/MODEL",
        help="Model override for this session's next prompt",
    )
    parser.add_argument(
        "--set-default-model", metavar="PROVIDER/MODEL",
        help="Persist the default model for new prompts",
    )
    parser.add_argument(
        "--reply", metavar="REQUEST_ID:REPLY",
        help="Answer a pending permission (once, always or reject)",
    )
    parser.add_argument(
        "--watch", action="store_true",
        help="Print live events until the stream closes",
    )
    args = parser.parse_args()

    log_level = os.getenv("OPENWORK_LOG_LEVEL", "INFO")
    log_file = _configure_logging(log_level)
    logger.info("Starting OpenWork CLI cwd=%s log=%s", Path.cwd(), log_file)

    from openwork.engine.errors import OpenWorkError

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 130
    except (OpenWorkError, ValueError) as exc:
        print(f"Error: {exc}")
        code = 1
    except Exception:
        logger.exception("Unexpected failure")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
