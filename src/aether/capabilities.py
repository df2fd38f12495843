"""
Aether Capabilities
The side-effecting services a program reaches through the evaluator/VM:
input/output, persistence, async tasks, crypto, network, files and time.

``Capabilities`` is the interface; every method fails with a
CAPABILITY_ERROR until a subclass provides it. ``DefaultCapabilities``
wires the interface to the host, ``RecordingCapabilities`` to in-memory
lists for embedding and tests.
"""

import base64
import concurrent.futures
import copy
import datetime
import hashlib
import hmac
import itertools
import json
import logging
import os
import random
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from cryptography.fernet import Fernet, InvalidToken

from .errors import AetherRuntimeError, RuntimeErrorKind
from .values import OBJECT, TaskHandle, display, from_python, type_name, values_equal

logger = logging.getLogger(__name__)

def _unavailable(name: str) -> AetherRuntimeError:
    return AetherRuntimeError(RuntimeErrorKind.CAPABILITY_ERROR, f"{name} is not available")

class Capabilities:
    def read_input(self) -> Any:
        raise _unavailable('input')

    def write_output(self, value: Any):
        raise _unavailable('output')

    def persist(self, value: Any):
        raise _unavailable('persist')

    def query(self, criteria: Any) -> Any:
        raise _unavailable('query')

    def invoke_async(self, body: Callable[[], Any]) -> TaskHandle:
        raise _unavailable('async')

    def await_task(self, handle: TaskHandle) -> Any:
        raise _unavailable('await')

    def hash(self, data: bytes) -> str:
        raise _unavailable('hash')

    def encrypt(self, data: bytes, key: bytes) -> str:
        raise _unavailable('encrypt')

    def decrypt(self, token: str, key: bytes) -> bytes:
        raise _unavailable('decrypt')

    def sign(self, data: bytes, key: bytes) -> str:
        raise _unavailable('sign')

    def verify(self, signature: str, data: bytes, key: bytes) -> bool:
        raise _unavailable('verify')

    def http_get(self, url: str) -> Dict[str, Any]:
        raise _unavailable('http')

    def now(self) -> str:
        raise _unavailable('datetime')

    def random(self) -> float:
        raise _unavailable('random')

    def env(self, name: str) -> Optional[str]:
        raise _unavailable('env')

    def read_file(self, path: str) -> str:
        raise _unavailable('file read')

    def write_file(self, path: str, text: str):
        raise _unavailable('file write')

    def append_file(self, path: str, text: str):
        raise _unavailable('file append')

    def log(self, value: Any):
        logger.info("%s", display(value))

class TaskRegistry:
    """Scheduler for async bodies with at-most-once result delivery.

    With ``workers=0`` bodies run eagerly on submission, which keeps runs
    deterministic; otherwise they run on a thread pool. A pool thread
    never blocks on the pool: tasks it submits run inline, and a task it
    awaits that is still queued is pulled off the queue and run inline.
    """

    def __init__(self, workers: int = 4, timeout: Optional[float] = 30.0):
        self.timeout = timeout
        self._executor = (concurrent.futures.ThreadPoolExecutor(max_workers=workers,
                                                                thread_name_prefix='aether-task')
                          if workers else None)
        self._pending: Dict[int, Tuple[concurrent.futures.Future, Callable[[], Any]]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._local = threading.local()

    def _in_worker(self) -> bool:
        return getattr(self._local, 'worker', False)

    def _run_on_worker(self, body: Callable[[], Any]) -> Any:
        self._local.worker = True
        try:
            return body()
        finally:
            self._local.worker = False

    @staticmethod
    def _settle(body: Callable[[], Any]) -> concurrent.futures.Future:
        future = concurrent.futures.Future()
        try:
            future.set_result(body())
        except Exception as exc:  # delivered to the awaiting caller
            future.set_exception(exc)
        return future

    def submit(self, body: Callable[[], Any]) -> TaskHandle:
        with self._lock:
            handle = TaskHandle(next(self._ids))
        if self._executor is None or self._in_worker():
            future = self._settle(body)
        else:
            future = self._executor.submit(self._run_on_worker, body)
        with self._lock:
            self._pending[handle.id] = (future, body)
        logger.debug("submitted task %d", handle.id)
        return handle

    def resolve(self, handle: TaskHandle) -> Any:
        with self._lock:
            entry = self._pending.pop(handle.id, None)
        if entry is None:
            raise AetherRuntimeError(RuntimeErrorKind.INVALID_VALUE,
                                     f"{handle} is unknown or was already awaited")
        future, body = entry
        if self._in_worker() and future.cancel():
            logger.debug("running queued task %d inline", handle.id)
            future = self._settle(body)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise AetherRuntimeError(RuntimeErrorKind.ASYNC_TIMEOUT,
                                     f"{handle} did not finish within {self.timeout}s") from exc

    def shutdown(self):
        """Wait for running tasks, then drop the results nobody awaited"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        with self._lock:
            abandoned = sorted(self._pending.items())
            self._pending.clear()
        for task_id, (future, _) in abandoned:
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                logger.warning("task %d failed and was never awaited: %r", task_id, error)
            else:
                logger.debug("task %d finished and was never awaited", task_id)

def _fernet(key: bytes) -> Fernet:
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(key).digest()))

class DefaultCapabilities(Capabilities):
    def __init__(self,
                 stdin=None,
                 stdout=None,
                 workers: int = 4,
                 task_timeout: Optional[float] = 30.0,
                 http_timeout: float = 10.0,
                 seed: Optional[int] = None):
        self.stdin = stdin
        self.stdout = stdout
        self.store: List[Any] = []
        self.tasks = TaskRegistry(workers=workers, timeout=task_timeout)
        self.http_timeout = http_timeout
        self._session: Optional[requests.Session] = None
        self._random = random.Random(seed)

    # I/O

    def read_input(self) -> Any:
        line = (self.stdin or sys.stdin).readline()
        if not line:
            return None
        line = line.rstrip('\n')
        try:
            return from_python(json.loads(line))
        except ValueError:
            return line

    def write_output(self, value: Any):
        stream = self.stdout or sys.stdout
        print(display(value), file=stream)
        stream.flush()

    # Persistence

    def persist(self, value: Any):
        self.store.append(copy.deepcopy(value))
        logger.debug("persisted %s (%d records)", type_name(value), len(self.store))

    def query(self, criteria: Any) -> Any:
        if criteria is None:
            return copy.deepcopy(self.store)
        if type_name(criteria) == OBJECT:
            matches = [record for record in self.store
                       if type_name(record) == OBJECT
                       and all(key in record and values_equal(record[key], wanted)
                               for key, wanted in criteria.items())]
        else:
            matches = [record for record in self.store if values_equal(record, criteria)]
        return copy.deepcopy(matches)

    # Async

    def invoke_async(self, body: Callable[[], Any]) -> TaskHandle:
        return self.tasks.submit(body)

    def await_task(self, handle: TaskHandle) -> Any:
        return self.tasks.resolve(handle)

    # Crypto

    def hash(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def sign(self, data: bytes, key: bytes) -> str:
        return hmac.new(key, data, hashlib.sha256).hexdigest()

    def verify(self, signature: str, data: bytes, key: bytes) -> bool:
        return hmac.compare_digest(self.sign(data, key), signature)

    def encrypt(self, data: bytes, key: bytes) -> str:
        return _fernet(key).encrypt(data).decode('ascii')

    def decrypt(self, token: str, key: bytes) -> bytes:
        try:
            return _fernet(key).decrypt(token.encode('ascii'))
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise AetherRuntimeError(RuntimeErrorKind.CAPABILITY_ERROR,
                                     "Cannot decrypt: wrong key or corrupted data") from exc

    # Network

    def http_get(self, url: str) -> Dict[str, Any]:
        if self._session is None:
            self._session = requests.Session()
        try:
            response = self._session.get(url, timeout=self.http_timeout)
        except requests.RequestException as exc:
            raise AetherRuntimeError(RuntimeErrorKind.CAPABILITY_ERROR,
                                     f"GET {url} failed: {exc}") from exc
        logger.debug("GET %s -> %d", url, response.status_code)
        return {'status': response.status_code, 'body': response.text}

    # Host

    def now(self) -> str:
        return datetime.datetime.now(datetime.timezone.utc).isoformat()

    def random(self) -> float:
        return self._random.random()

    def env(self, name: str) -> Optional[str]:
        return os.environ.get(name)

    def read_file(self, path: str) -> str:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as exc:
            raise AetherRuntimeError(RuntimeErrorKind.CAPABILITY_ERROR,
                                     f"Cannot read {path}: {exc}") from exc

    def write_file(self, path: str, text: str):
        self._write(path, text, 'w')

    def append_file(self, path: str, text: str):
        self._write(path, text, 'a')

    def _write(self, path: str, text: str, mode: str):
        try:
            with open(path, mode, encoding='utf-8') as f:
                f.write(text)
        except OSError as exc:
            raise AetherRuntimeError(RuntimeErrorKind.CAPABILITY_ERROR,
                                     f"Cannot write {path}: {exc}") from exc

class RecordingCapabilities(DefaultCapabilities):
    """Scripted inputs, captured outputs, eager tasks"""

    def __init__(self, inputs: Optional[List[Any]] = None, **kwargs):
        kwargs.setdefault('workers', 0)
        kwargs.setdefault('seed', 0)
        super().__init__(**kwargs)
        self.inputs = [from_python(item) for item in (inputs or [])]
        self.outputs: List[Any] = []
        self.logged: List[Any] = []

    def read_input(self) -> Any:
        if not self.inputs:
            return None
        return self.inputs.pop(0)

    def write_output(self, value: Any):
        self.outputs.append(copy.deepcopy(value))

    def log(self, value: Any):
        self.logged.append(value)
        super().log(value)
