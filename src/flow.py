"""Per-session submission flow: confirmation gate, rate limit, submit.

    IDLE --submit--> AWAITING_CONFIRMATION   (model flagged nsfw)
    IDLE --submit--> SUBMITTING              (otherwise)
    AWAITING_CONFIRMATION --confirm--> SUBMITTING
    AWAITING_CONFIRMATION --decline--> IDLE  (+ on_decline navigation)
    SUBMITTING --done--> IDLE                (Outcome handed to the caller)

Only one request may be pending or in flight per flow.
"""
import enum
import logging
import threading
from typing import Callable, Iterable, Optional

from .catalog import ModelDescriptor, find_model
from .errors import SubmissionError, SubmissionInProgress
from .handles import GeneratedImageHandle, ImageSlot
from .image_gen import GenerationRequest, ImageGenerator
from .rate_limit import RateLimiter


logger = logging.getLogger(__name__)


class FlowState(enum.Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTING = "submitting"


class Outcome:
    def __init__(self, handle: Optional[GeneratedImageHandle] = None, error: Optional[SubmissionError] = None):
        self.handle = handle
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None and self.handle is not None

    def __repr__(self):
        return f"Outcome(handle={self.handle!r}, error={self.error!r})"


def requires_confirmation(model: ModelDescriptor) -> bool:
    return model.nsfw


class GenerationFlow:
    def __init__(
        self,
        generator: ImageGenerator,
        catalog: Optional[Iterable[ModelDescriptor]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        confirm_nsfw: bool = True,
        on_decline: Optional[Callable[[], None]] = None,
        on_transition: Optional[Callable[[FlowState], None]] = None,
    ):
        self.generator = generator
        self.catalog = tuple(catalog) if catalog is not None else generator.catalog
        self.rate_limiter = rate_limiter
        self.confirm_nsfw = confirm_nsfw
        self.on_decline = on_decline
        self.on_transition = on_transition
        self.slot = ImageSlot()
        self._state = FlowState.IDLE
        self._pending = None
        self._lock = threading.Lock()

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def pending_model(self) -> Optional[ModelDescriptor]:
        if self._pending is None:
            return None
        return find_model(self._pending[0].model_id, self.catalog)

    def _set_state(self, state: FlowState):
        self._state = state
        if self.on_transition is not None:
            self.on_transition(state)

    def submit(self, request: GenerationRequest, credential: str) -> Optional[Outcome]:
        """Start a submission.

        Returns the Outcome, or None when the model needs confirmation first.
        Raises SubmissionInProgress if another request is pending.
        """
        with self._lock:
            if self._state is not FlowState.IDLE:
                raise SubmissionInProgress()
            try:
                model = find_model(request.model_id, self.catalog)
            except SubmissionError as exc:
                return Outcome(error=exc)
            if self.confirm_nsfw and requires_confirmation(model):
                self._pending = (request, credential)
                self._set_state(FlowState.AWAITING_CONFIRMATION)
                return None
            self._set_state(FlowState.SUBMITTING)
        return self._run(request, credential)

    def confirm(self) -> Outcome:
        with self._lock:
            if self._state is not FlowState.AWAITING_CONFIRMATION:
                raise RuntimeError(f"Nothing awaiting confirmation (state={self._state.value})")
            request, credential = self._pending
            self._pending = None
            self._set_state(FlowState.SUBMITTING)
        return self._run(request, credential)

    def decline(self):
        with self._lock:
            if self._state is not FlowState.AWAITING_CONFIRMATION:
                raise RuntimeError(f"Nothing awaiting confirmation (state={self._state.value})")
            self._pending = None
            self._set_state(FlowState.IDLE)
        if self.on_decline is not None:
            self.on_decline()

    def _run(self, request: GenerationRequest, credential: str) -> Outcome:
        try:
            if self.rate_limiter is not None:
                self.rate_limiter.check()
            handle = self.generator.submit(request, credential)
        except SubmissionError as exc:
            logger.error("Error generating image: %s", exc)
            outcome = Outcome(error=exc)
        else:
            self.slot.replace(handle)
            outcome = Outcome(handle=handle)
        finally:
            with self._lock:
                self._set_state(FlowState.IDLE)
        return outcome
