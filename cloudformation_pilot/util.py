from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timezone
import logging
import threading
import time
import re
import boto3
from botocore.exceptions import ClientError
from colorama import Fore, Style
import copy

log = logging.getLogger('stack-pilot')


class ColorFormatter(logging.Formatter):
    DIM_LEVELS_BELOW = logging.DEBUG
    YELLOW_LEVELS_ABOVE = logging.WARNING
    RED_LEVELS_ABOVE = logging.ERROR

    def format(self, record, *args, **kwargs):
        new_record = copy.copy(record)
        new_record.levelname = f'{Style.DIM}{new_record.levelname}{Style.RESET_ALL}'

        if new_record.levelno <= self.__class__.DIM_LEVELS_BELOW:
            new_record.msg = f'{Style.DIM}{new_record.msg}'
        elif self.__class__.YELLOW_LEVELS_ABOVE <= new_record.levelno < self.__class__.RED_LEVELS_ABOVE:
            new_record.msg = f'{Fore.YELLOW}{new_record.msg}'
        elif self.__class__.RED_LEVELS_ABOVE <= new_record.levelno:
            new_record.msg = f'{Fore.RED}{new_record.msg}'

        new_record.msg = f'{new_record.msg}{Style.RESET_ALL}'
        return super().format(new_record, *args, **kwargs)


def log_section(section_text, color=Fore.CYAN, bold=False):
    log.info(f' {color}{section_text}{Style.RESET_ALL} '.center(80, '=' if bold else '-'))


session = boto3.Session()


class PilotError(Exception): pass                       # noqa E701,E302
class InvalidParameters(PilotError): pass               # noqa E701,E302
class TemplateParseError(PilotError): pass              # noqa E701,E302
class DeploymentLogCorrupt(PilotError): pass            # noqa E701,E302
class StackNotFound(PilotError): pass                   # noqa E701,E302
class ChangesetFailed(PilotError): pass                 # noqa E701,E302
class DeploymentFailed(PilotError): pass                # noqa E701,E302
class DriftDetectionFailed(PilotError): pass            # noqa E701,E302
class OperationTimedOut(PilotError): pass               # noqa E701,E302
class OperationCancelled(PilotError): pass              # noqa E701,E302
class ResourceLookupFailed(PilotError): pass            # noqa E701,E302


STACK_META_TYPE = 'AWS::CloudFormation::Stack'

SLUG_RE = re.compile(r'[^a-z0-9]+')


def slug(text: str) -> str:
    return SLUG_RE.sub('-', text.lower()).strip('-')


def client_error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', '')


def client_error_message(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Message', '')


def wildcard_regex(pattern: str):
    return re.compile('^' + '.*'.join(re.escape(xp) for xp in pattern.split('*')) + '$')


class Clock(object):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float, interrupt: Optional[threading.Event] = None) -> None:
        if interrupt is not None:
            interrupt.wait(seconds)
        else:
            time.sleep(seconds)


class OperationContext(object):
    """Deadline and cancellation signal handed down to every provider call.

    The provider SDK is synchronous, so cancellation is observed between calls:
    before each request, on every pagination step and at every sleep boundary.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Optional[Clock] = None,
                 cancel_event: Optional[threading.Event] = None, deadline: Optional[float] = None) -> None:
        self.clock: Clock = clock or Clock()
        self.cancel_event: threading.Event = cancel_event or threading.Event()
        self.deadline: Optional[float] = deadline
        if timeout is not None:
            candidate = time.monotonic() + timeout
            self.deadline = candidate if self.deadline is None else min(self.deadline, candidate)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelled('Operation cancelled by the caller')
        if self.expired():
            raise OperationTimedOut('Operation deadline exceeded')

    def derive(self, timeout: float) -> 'OperationContext':
        return OperationContext(timeout=timeout, clock=self.clock,
                                cancel_event=self.cancel_event, deadline=self.deadline)

    def sleep(self, seconds: float) -> None:
        self.check()
        remaining = self.remaining()
        self.clock.sleep(seconds if remaining is None else min(seconds, remaining), self.cancel_event)
        self.check()


def background_context() -> OperationContext:
    return OperationContext()


def exhaust_pages(ctx: OperationContext, call: Callable[..., Dict[str, Any]],
                  result_key: str, **kwargs) -> List[Any]:
    results: List[Any] = list()
    while True:
        ctx.check()
        r = call(**kwargs)
        results.extend(r.get(result_key, list()))
        next_token = r.get('NextToken')
        if not next_token:
            return results
        kwargs['NextToken'] = next_token


def rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
