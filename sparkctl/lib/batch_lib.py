'''
Benchmark batch: switch, relaunch, wait and benchmark each selected model
in turn. A failing model gets a status tag and the batch moves on.
'''

import os
import shutil
import time
from datetime import datetime
from enum import Enum

from pydantic import ValidationError

from sparkctl.lib import globals
from sparkctl.lib import benchmark_lib
from sparkctl.lib import cluster_lib
from sparkctl.lib import config_lib
from sparkctl.lib.benchmark_lib import BenchmarkError
from sparkctl.lib.model_catalog import CATALOG
from sparkctl.lib.switch_lib import apply_model_config
from sparkctl.lib.readiness_lib import Verdict
from sparkctl.lib.utils_lib import ConfigurationError, SparkctlError, print_banner, print_msg, print_warning
from sparkctl.schema.benchmark import BenchmarkResult

log = globals.log

STARTUP_TIMEOUT = 900
BENCHMARK_TIMEOUT = 600
PAUSE_BETWEEN_MODELS = 5
BATCH_PROFILES = ['quick', 'short', 'medium']


class BatchStatus(str, Enum):
    OK = 'OK'
    CONFIG_FAILED = 'CONFIG_FAILED'
    STARTUP_FAILED = 'STARTUP_FAILED'
    BENCH_FAILED = 'BENCH_FAILED'
    NO_OUTPUT = 'NO_OUTPUT'


def parse_model_numbers( models_csv ):
    """'1,3,5' -> [1, 3, 5]; entries outside the catalog are dropped."""
    numbers = []
    for token in str(models_csv).split(','):
        token = token.strip()
        if not token:
            continue
        try:
            number = int(token)
        except ValueError:
            raise ConfigurationError(f'Invalid model number in --models: {token}')
        if 1 <= number <= len(CATALOG):
            numbers.append(number)
        else:
            log.warning(f'Ignoring model number {number}, not in 1-{len(CATALOG)}')
    return numbers


def select_models( single_node=False, multi_node=False, skip_token=False, models_csv=None, has_token=True ):
    """
    Catalog entries to benchmark, in catalog order.

    An explicit --models list is taken as is. Otherwise the node filters
    and the gated-model filters apply; gated models are also skipped when
    no HF token is configured.
    """
    if models_csv:
        return [CATALOG[number - 1] for number in parse_model_numbers(models_csv)]
    selected = []
    for profile in CATALOG:
        if single_node and profile.nodes != 1:
            continue
        if multi_node and profile.nodes < 2:
            continue
        if skip_token and profile.gated:
            continue
        if profile.gated and not has_token:
            print_msg(f'Skipping {profile.short_name} (requires HF token)')
            continue
        selected.append(profile)
    return selected


def failed_result( profile, status ):
    return BenchmarkResult(model=profile.model_id, model_short=profile.short_name, nodes=profile.nodes,
        tp=profile.tp, status=status.value)


class BenchmarkBatch():
    """
    Runs the per-model pipeline with injected steps so it can be driven
    without a cluster:

      switch(profile)               -> writes the model config, raises on failure
      start(profile, timeout)       -> ReadinessState of the relaunch
      bench(profile, output_dir)    -> (output_file, metrics dict or None)
      stop()                        -> tears the cluster down at the end
    """

    def __init__(self, models, switch, start, bench, stop, output_dir, sleep=time.sleep,
            startup_timeout=STARTUP_TIMEOUT, pause=PAUSE_BETWEEN_MODELS):
        self.models = list(models)
        self.switch = switch
        self.start = start
        self.bench = bench
        self.stop = stop
        self.output_dir = output_dir
        self.sleep = sleep
        self.startup_timeout = startup_timeout
        self.pause = pause
        self.results = []
        self.start_time = None
        self.end_time = None


    def run_model(self, profile):
        print_msg(f'Starting benchmark for {profile.short_name} ({profile.model_id})')
        try:
            self.switch(profile)
        except (SparkctlError, OSError) as e:
            print_warning(f'{profile.short_name}: configuration update failed: {e}')
            return failed_result(profile, BatchStatus.CONFIG_FAILED)

        print_msg('  Starting cluster (this may take several minutes)...')
        try:
            state = self.start(profile, self.startup_timeout)
        except SparkctlError as e:
            print_warning(f'{profile.short_name}: startup failed: {e.message}')
            return failed_result(profile, BatchStatus.STARTUP_FAILED)
        except Exception as e:
            log.error(f'{profile.short_name}: unexpected startup error: {e!r}')
            print_warning(f'{profile.short_name}: startup failed: {e}')
            return failed_result(profile, BatchStatus.STARTUP_FAILED)
        if state.verdict != Verdict.READY:
            print_warning(f'{profile.short_name}: API not ready after {self.startup_timeout}s ({state.verdict.value})')
            return failed_result(profile, BatchStatus.STARTUP_FAILED)
        print_msg('  API is ready')

        print_msg('  Running benchmark...')
        try:
            output_file, metrics = self.bench(profile, self.output_dir)
        except BenchmarkError as e:
            status = BatchStatus.NO_OUTPUT if 'No output file' in e.message else BatchStatus.BENCH_FAILED
            print_warning(f'{profile.short_name}: benchmark failed or timed out: {e.message}')
            return failed_result(profile, status)
        except Exception as e:
            log.error(f'{profile.short_name}: unexpected benchmark error: {e!r}')
            print_warning(f'{profile.short_name}: benchmark failed: {e}')
            return failed_result(profile, BatchStatus.BENCH_FAILED)
        if not metrics:
            print_warning(f'{profile.short_name}: benchmark output file not found')
            return failed_result(profile, BatchStatus.NO_OUTPUT)

        try:
            result = BenchmarkResult(model=profile.model_id, model_short=profile.short_name, nodes=profile.nodes,
                tp=profile.tp, output_throughput=metrics.get('output_throughput'),
                total_throughput=metrics.get('total_throughput'), ttft_ms=metrics.get('ttft_ms'),
                itl_ms=metrics.get('itl_ms'), e2e_ms=metrics.get('e2e_ms'), status=BatchStatus.OK.value)
        except ValidationError as e:
            log.error(f'{profile.short_name}: unusable metrics {metrics}: {e}')
            print_warning(f'{profile.short_name}: benchmark produced invalid metrics')
            return failed_result(profile, BatchStatus.BENCH_FAILED)
        if output_file and os.path.isfile(output_file):
            shutil.move(output_file, os.path.join(self.output_dir, f'{profile.short_name}_benchmark.json'))
        print_msg(f'  Results: {result.output_throughput} tok/s output, {result.ttft_ms}ms TTFT, {result.itl_ms}ms ITL')
        return result


    def run(self):
        """Benchmark every model; always stops the cluster at the end."""
        os.makedirs(self.output_dir, exist_ok=True)
        self.start_time = datetime.now()
        try:
            for count, profile in enumerate(self.models, start=1):
                print_banner(f'Model {count}/{len(self.models)}: {profile.short_name}')
                self.results.append(self.run_model(profile))
                if count < len(self.models):
                    self.sleep(self.pause)
        finally:
            print_msg('Stopping cluster...')
            try:
                self.stop()
            except SparkctlError as e:
                print_warning(f'Failed to stop cluster: {e.message}')
            self.end_time = datetime.now()
        return self.results


    @property
    def total_seconds(self):
        if not self.start_time or not self.end_time:
            return 0
        return int((self.end_time - self.start_time).total_seconds())


def cluster_batch( config_dir, models, bench, output_dir ):
    """BenchmarkBatch wired to the real switcher, cluster lifecycle and bench_serving run."""

    def _switch(profile):
        apply_model_config(config_dir, profile)

    def _start(profile, timeout):
        settings = config_lib.load_settings(config_dir)
        cluster_lib.stop_cluster(settings)
        return cluster_lib.start_cluster(settings, head_only=profile.nodes == 1, skip_pull=True,
            ready_timeout=timeout, print_summary=False)

    def _bench(profile, output_dir):
        settings = config_lib.load_settings(config_dir)
        return benchmark_lib.run_benchmark(bench, profile.model_id, settings.image, output_dir,
            port=settings.sglang_port, timeout=BENCHMARK_TIMEOUT, hf_token=settings.hf_token)

    def _stop():
        cluster_lib.stop_cluster(config_lib.load_settings(config_dir))

    return BenchmarkBatch(models, _switch, _start, _bench, _stop, output_dir)
