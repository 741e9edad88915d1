'''
Readiness poller for a freshly launched cluster.

One tick per second: probe the health endpoint, otherwise look at the head
container and decide between still starting, crashed and gone. The verdict
distinguishes a patience timeout (soft) from a confirmed failure (hard).
'''

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from sparkctl.lib import globals
from sparkctl.lib import docker_lib
from sparkctl.lib.utils_lib import print_msg

log = globals.log

TICK_SECONDS = 1
MULTI_NODE_BUDGET = 600
SINGLE_NODE_BUDGET = 300
MAX_CONSECUTIVE_FAILURES = 10
PROGRESS_EVERY = 30


class ContainerStatus(str, Enum):
    RUNNING = 'running'
    EXITED = 'exited'
    DEAD = 'dead'
    NOT_FOUND = 'not_found'

    @classmethod
    def from_docker(cls, raw):
        """
        Map a docker state string onto the statuses the poller acts on.
        Transient states (created, restarting, paused) and anything unknown
        count as running.
        """
        raw = (raw or '').strip().lower()
        for status in (cls.EXITED, cls.DEAD, cls.NOT_FOUND):
            if raw == status.value:
                return status
        return cls.RUNNING


class Verdict(str, Enum):
    POLLING = 'polling'
    READY = 'ready'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'
    CANCELLED = 'cancelled'


class CleanExitPolicy(str, Enum):
    # exit code 0 counts towards the consecutive-failure ceiling
    SOFT = 'soft'
    # exit code 0 fails immediately, like any other exit
    FATAL = 'fatal'


@dataclass
class ReadinessState:
    tick: int = 0
    consecutive_failures: int = 0
    max_consecutive_failures_seen: int = 0
    last_status: Optional[ContainerStatus] = None
    last_exit_code: Optional[int] = None
    verdict: Verdict = Verdict.POLLING
    message: str = ''

    @property
    def terminal(self):
        return self.verdict != Verdict.POLLING


def readiness_budget( num_nodes, override=None ):
    """Tick budget: explicit override, else longer for multi-node startup."""
    if override:
        return int(override)
    return MULTI_NODE_BUDGET if num_nodes > 1 else SINGLE_NODE_BUDGET



class HttpHealthProbe():
    """GET /health on the serving port; only HTTP 200 means ready."""

    def __init__(self, port, host='127.0.0.1', timeout=2, session=None):
        self.url = f'http://{host}:{port}/health'
        self.timeout = timeout
        self.session = session or requests

    def __call__(self):
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
        except requests.exceptions.RequestException:
            return False
        return resp.status_code == 200


class DockerContainerMonitor():
    """Status, exit code and log tail of the head container."""

    def __init__(self, hdl, container_name):
        self.hdl = hdl
        self.container_name = container_name

    def status(self):
        return ContainerStatus.from_docker(docker_lib.get_container_status(self.hdl, self.container_name))

    def exit_code(self):
        return docker_lib.get_container_exit_code(self.hdl, self.container_name)

    def log_tail(self):
        return docker_lib.get_container_log_tail(self.hdl, self.container_name)



class ReadinessPoller():
    """
    Tick-driven readiness state machine.

    health_probe: callable returning True when the service answers.
    monitor: object with status(), exit_code() and log_tail().
    sleep: injected so tests run without waiting.
    cancel_event: threading.Event; when set the poller stops with CANCELLED
      at the next tick boundary.
    """

    def __init__(self, health_probe, monitor, budget, clean_exit_policy=CleanExitPolicy.SOFT,
            max_consecutive_failures=MAX_CONSECUTIVE_FAILURES, progress_every=PROGRESS_EVERY,
            sleep=time.sleep, cancel_event=None, on_progress=None, container_name='sglang-head'):
        self.health_probe = health_probe
        self.monitor = monitor
        self.budget = budget
        self.clean_exit_policy = CleanExitPolicy(clean_exit_policy)
        self.max_consecutive_failures = max_consecutive_failures
        self.progress_every = progress_every
        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()
        self.on_progress = on_progress or self._print_progress
        self.container_name = container_name
        self.state = ReadinessState()


    def _print_progress(self, tick, log_line):
        print_msg(f'  Still initializing... ({tick}s)')
        if log_line:
            print(f'  {log_line}')


    def _fail(self, message):
        self.state.verdict = Verdict.FAILED
        self.state.message = message
        return self.state


    def step(self):
        """Advance one tick and return the state."""
        state = self.state
        if state.terminal:
            return state
        state.tick += 1

        if self.health_probe():
            state.verdict = Verdict.READY
            state.message = f'Cluster is ready! ({state.tick}s)'
            return state

        status = self.monitor.status()
        state.last_status = status
        if status in (ContainerStatus.EXITED, ContainerStatus.DEAD):
            exit_code = self.monitor.exit_code()
            state.last_exit_code = exit_code
            if exit_code != 0:
                return self._fail(f'Head container exited with code {exit_code if exit_code is not None else "unknown"}')
            if self.clean_exit_policy == CleanExitPolicy.FATAL:
                return self._fail('Head container exited cleanly (code 0) before becoming ready')
            state.consecutive_failures += 1
        elif status == ContainerStatus.NOT_FOUND:
            state.consecutive_failures += 1
        else:
            state.consecutive_failures = 0
        state.max_consecutive_failures_seen = max(state.max_consecutive_failures_seen, state.consecutive_failures)

        if state.consecutive_failures >= self.max_consecutive_failures:
            return self._fail(f'Head container not running after {self.max_consecutive_failures} checks')

        if state.tick >= self.budget:
            state.verdict = Verdict.TIMED_OUT
            state.message = f'Cluster not confirmed ready after {self.budget}s'
            return state

        if self.progress_every and state.tick % self.progress_every == 0:
            self.on_progress(state.tick, self.monitor.log_tail())

        return state


    def run(self):
        """
        Poll until a terminal verdict. Sleeps one tick between observations
        and checks for cancellation at every tick boundary.
        """
        while True:
            if self.cancel_event.is_set():
                self.state.verdict = Verdict.CANCELLED
                self.state.message = 'Readiness wait cancelled'
                return self.state
            state = self.step()
            if state.terminal:
                log.info(f'readiness verdict {state.verdict.value} at tick {state.tick}: {state.message}')
                return state
            self.sleep(TICK_SECONDS)


    def cancel(self):
        self.cancel_event.set()


def build_head_poller( settings, num_nodes, hdl, budget=None, clean_exit_policy=CleanExitPolicy.SOFT,
        sleep=time.sleep, cancel_event=None ):
    """Poller wired to the local head container and its health endpoint."""
    return ReadinessPoller(
        HttpHealthProbe(settings.sglang_port),
        DockerContainerMonitor(hdl, settings.head_container_name),
        readiness_budget(num_nodes, budget),
        clean_exit_policy=clean_exit_policy,
        sleep=sleep,
        cancel_event=cancel_event,
        container_name=settings.head_container_name,
    )
