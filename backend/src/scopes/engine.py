"""Scope engine — runs scope reductions behind a single error boundary.

Every request goes through ScopeEngine.handle(), which never raises: any
failure becomes an ``{"ok": False, ...}`` response. handle_many() runs
several scopes over the same image in parallel, one task per scope type,
all sharing one read-only view of the buffer.

Includes rolling timing stats per scope type for the scope_stats command.
"""

import logging
import os
import threading
import time
import traceback
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor

import sentry_sdk

from scopes import registry
from scopes.errors import ComputationFault, InvalidScopeOption, MalformedImage, ScopeError
from scopes.histogram import Histogram
from scopes.image import Image
from scopes.vectorscope import Vectorscope, VectorscopePolicy
from scopes.waveform import Parade, Waveform, WaveformMode
from security import strip_pii_text, validate_scope_list

logger = logging.getLogger(__name__)

# Slow-scope warning threshold (milliseconds)
SCOPE_WARN_MS = 100

DEFAULT_WORKERS = 3

# Rolling timing stats per scope type, shared by every engine in the process
_timing_lock = threading.Lock()
_scope_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def record_timing(scope_type: str, elapsed_ms: float):
    """Record a timing sample for a scope type."""
    with _timing_lock:
        _scope_timing[scope_type].append(elapsed_ms)


def get_scope_stats() -> dict[str, dict]:
    """Return p50/p95/max per scope type."""
    with _timing_lock:
        snapshot = {k: sorted(v) for k, v in _scope_timing.items()}
    result = {}
    for scope_type, s in snapshot.items():
        result[scope_type] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _scope_timing.clear()


def _capture_with_context(e: Exception, scope_type: str, image: Image):
    """Capture to Sentry with scope-level context. Dimensions only, never pixels."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("scope_type", scope_type)
        scope.fingerprint = ["scope-crash", scope_type, type(e).__name__]
        scope.set_context("image", {"width": image.width, "height": image.height})
        sentry_sdk.capture_exception(e, scope=scope)


def _stacks_enabled() -> bool:
    return os.environ.get("APP_SCOPE_STACKS", "") == "1"


class ScopeEngine:
    """Histogram, waveform and vectorscope over RGBA images.

    The compute_* methods raise ScopeError subclasses; handle() and
    handle_many() convert everything into response dicts.
    """

    def __init__(self, max_workers: int | None = None, include_stacks: bool | None = None):
        if max_workers is None:
            max_workers = int(os.environ.get("APP_SCOPE_WORKERS", DEFAULT_WORKERS))
        self.max_workers = max(1, max_workers)
        self.include_stacks = (
            _stacks_enabled() if include_stacks is None else include_stacks
        )
        self.last_scope_ms = 0.0
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    # --- Pure operations ---

    def compute_histogram(self, image: Image) -> Histogram:
        return self.compute("histogram", image)

    def compute_waveform(
        self, image: Image, mode: WaveformMode = WaveformMode.PARADE
    ) -> Waveform | Parade:
        return self.compute("waveform", image, {"mode": mode})

    def compute_vectorscope(
        self, image: Image, policy: VectorscopePolicy = VectorscopePolicy.REC709
    ) -> Vectorscope:
        return self.compute("vectorscope", image, {"policy": policy})

    def compute(self, scope_type: str, image: Image, options: dict | None = None):
        """Run one scope. Options may be Enum members or their wire strings.

        Raises:
            InvalidScopeType: unknown scope type or option value.
            ComputationFault: anything unexpected inside the reduction.
        """
        info = registry.require(scope_type)
        if options is not None and not isinstance(options, dict):
            raise InvalidScopeOption(scope_type, "options", options, ["object"])
        wire_options = {
            k: (v.value if hasattr(v, "value") else v)
            for k, v in (options or {}).items()
        }
        kwargs = registry.resolve_options(scope_type, wire_options)

        t0 = time.monotonic()
        try:
            result = info["fn"](image, **kwargs)
        except ScopeError:
            raise
        except Exception as e:
            _capture_with_context(e, scope_type, image)
            logger.error("Scope %s failed: %s", scope_type, type(e).__name__)
            raise ComputationFault(scope_type, e) from e
        elapsed_ms = (time.monotonic() - t0) * 1000

        record_timing(scope_type, elapsed_ms)
        self.last_scope_ms = round(elapsed_ms, 2)
        if elapsed_ms > SCOPE_WARN_MS:
            logger.warning(
                "Scope %s took %.0fms (>%dms warn threshold) on %dx%d image",
                scope_type,
                elapsed_ms,
                SCOPE_WARN_MS,
                image.width,
                image.height,
            )
        return result

    # --- Request boundary ---

    def handle(self, request: dict) -> dict:
        """Run one ``{"image", "scope_type", "options"}`` request. Never raises."""
        if not isinstance(request, dict):
            return self._error_response(MalformedImage("request must be an object"))
        scope_type = request.get("scope_type")
        try:
            registry.require(scope_type)
            image = self._decode_image(request.get("image"))
        except ScopeError as e:
            return self._error_response(e)
        except Exception as e:
            logger.error("Unhandled image decode error: %s", type(e).__name__)
            sentry_sdk.capture_exception(e)
            return self._error_response(ComputationFault(str(scope_type), e))
        return self._run_guarded(scope_type, image, request.get("options"))

    def handle_many(self, request: dict) -> dict:
        """Run several scopes over one image in parallel. Never raises.

        Returns ``{"ok": True, "results": {scope_type: response}}`` where
        each response is what handle() would return for that type alone.
        """
        if not isinstance(request, dict):
            return self._error_response(MalformedImage("request must be an object"))
        scope_types = request.get("scope_types")
        errors = validate_scope_list(scope_types)
        if errors:
            return {"ok": False, "error": "; ".join(errors), "error_type": "InvalidScopeType"}

        try:
            image = self._decode_image(request.get("image"))
        except ScopeError as e:
            return self._error_response(e)
        except Exception as e:
            logger.error("Unhandled image decode error: %s", type(e).__name__)
            sentry_sdk.capture_exception(e)
            return self._error_response(ComputationFault("scopes", e))

        options = request.get("options")
        executor = self._ensure_executor()
        futures = {
            scope_type: executor.submit(self._run_guarded, scope_type, image, options)
            for scope_type in scope_types
        }
        return {
            "ok": True,
            "results": {scope_type: f.result() for scope_type, f in futures.items()},
        }

    def close(self):
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    # --- Internals ---

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="scope"
                )
            return self._executor

    @staticmethod
    def _decode_image(payload) -> Image:
        if isinstance(payload, Image):
            return payload
        return Image.from_message(payload)

    def _run(self, scope_type: str, image: Image, options) -> dict:
        result = self.compute(scope_type, image, options)
        return {"ok": True, "scope_type": scope_type, "result": result.to_dict()}

    def _run_guarded(self, scope_type: str, image: Image, options) -> dict:
        try:
            registry.require(scope_type)
            return self._run(scope_type, image, options)
        except ScopeError as e:
            return self._error_response(e)
        except Exception as e:
            logger.error("Unhandled scope error: %s", type(e).__name__)
            sentry_sdk.capture_exception(e)
            return self._error_response(ComputationFault(str(scope_type), e))

    def _error_response(self, e: ScopeError) -> dict:
        response = {"ok": False, "error": str(e), "error_type": e.error_type}
        if isinstance(e, ComputationFault) and self.include_stacks:
            stack = "".join(
                traceback.format_exception(type(e.cause), e.cause, e.cause.__traceback__)
            )
            response["stack"] = strip_pii_text(stack)
        return response
