import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from scopes import registry
from scopes.engine import ScopeEngine, flush_timing, get_scope_stats

logger = logging.getLogger(__name__)

# Raw RGBA frames travel base64-encoded inside JSON
MAX_MESSAGE_BYTES = 64 * 1024 * 1024  # 64 MB
MAX_PING_BYTES = 4096


class ZMQServer:
    def __init__(self, engine: ScopeEngine | None = None):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_MESSAGE_BYTES)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by a large scope request
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, MAX_PING_BYTES)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token: rejects unauthorized ZMQ access from other local processes
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.engine = engine if engine is not None else ScopeEngine()

    def reset_state(self):
        """Clear accumulated state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        flush_timing()
        self.engine.last_scope_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_scope_ms": self.engine.last_scope_ms,
        }

    def handle_message(self, message: dict) -> dict:
        if not isinstance(message, dict):
            return {"id": None, "ok": False, "error": "Invalid message format"}

        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "scope":
            return self._handle_scope(message, msg_id)
        elif cmd == "scopes":
            return self._handle_scopes(message, msg_id)
        elif cmd == "list_scopes":
            return {"id": msg_id, "ok": True, "scopes": registry.list_all()}
        elif cmd == "scope_stats":
            return {"id": msg_id, "ok": True, "stats": get_scope_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_scope(self, message: dict, msg_id: str | None) -> dict:
        response = self.engine.handle(
            {
                "image": message.get("image"),
                "scope_type": message.get("scope_type"),
                "options": message.get("options"),
            }
        )
        if not response["ok"]:
            logger.info(
                "Scope request rejected: %s",
                response.get("error_type"),
                extra={"scope_type": str(message.get("scope_type")), "msg_id": msg_id},
            )
        return {"id": msg_id, **response}

    def _handle_scopes(self, message: dict, msg_id: str | None) -> dict:
        response = self.engine.handle_many(
            {
                "image": message.get("image"),
                "scope_types": message.get("scope_types"),
                "options": message.get("options"),
            }
        )
        return {"id": msg_id, **response}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except (ValueError, AttributeError):
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            # Handle main command socket
            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except ValueError:
                    # Not JSON or not UTF-8. MUST reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.engine.close()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
