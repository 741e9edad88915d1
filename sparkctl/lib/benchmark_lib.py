'''
Single benchmark run against the serving endpoint using sglang.bench_serving,
plus the HTTP probes shared with the model switcher.
'''

import json
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

import requests

from sparkctl.lib import globals
from sparkctl.lib.utils_lib import ConfigurationError, SparkctlError, print_msg

log = globals.log

BENCH_TMP_OUTPUT = '/tmp/benchmark_output.json'
DEFAULT_HOST = '127.0.0.1'
DEFAULT_BENCH_TIMEOUT = 60*60


@dataclass(frozen=True)
class BenchmarkSettings:
    profile: str
    num_prompts: int
    input_len: int
    output_len: int
    request_rate: str = 'inf'
    max_concurrency: Optional[int] = None


PROFILES = {
    'quick': BenchmarkSettings('quick', 10, 128, 128),
    'short': BenchmarkSettings('short', 50, 256, 256),
    'medium': BenchmarkSettings('medium', 100, 512, 512),
    'long': BenchmarkSettings('long', 200, 1024, 1024),
    'throughput': BenchmarkSettings('throughput', 500, 256, 256, max_concurrency=64),
    'latency': BenchmarkSettings('latency', 100, 128, 128, request_rate='2'),
    'stress': BenchmarkSettings('stress', 1000, 512, 512, max_concurrency=128),
}
PROFILE_NAMES = list(PROFILES.keys()) + ['custom']


class BenchmarkError(SparkctlError):
    """The benchmark process failed, timed out or wrote no output."""


def resolve_benchmark_settings( profile='quick', num_prompts=None, input_len=None, output_len=None,
        request_rate=None, max_concurrency=None ):
    """
    Preset for a named profile. Any explicit override disables the preset:
    the run becomes 'custom', starting from the quick defaults.
    """
    profile = profile or 'quick'
    if profile not in PROFILE_NAMES:
        raise ConfigurationError(f'Unknown benchmark profile: {profile}',
            remediation=f'Choose one of: {", ".join(PROFILE_NAMES)}')
    overrides = {
        'num_prompts': num_prompts,
        'input_len': input_len,
        'output_len': output_len,
        'request_rate': None if request_rate is None else str(request_rate),
        'max_concurrency': max_concurrency,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides or profile == 'custom':
        return replace(PROFILES['quick'], profile='custom', **overrides)
    return PROFILES[profile]


def build_bench_serving_args( bench, model, host=DEFAULT_HOST, port=30000, output_file=BENCH_TMP_OUTPUT ):
    args = [
        '--backend', 'sglang-oai',
        '--host', host,
        '--port', str(port),
        '--model', model,
        '--dataset-name', 'random',
        '--num-prompts', str(bench.num_prompts),
        '--random-input-len', str(bench.input_len),
        '--random-output-len', str(bench.output_len),
        '--request-rate', str(bench.request_rate),
        '--output-file', output_file,
    ]
    if bench.max_concurrency:
        args += ['--max-concurrency', str(bench.max_concurrency)]
    return args


def build_bench_command( bench_args, image, use_docker=True ):
    if not use_docker:
        return ['python3', '-m', 'sglang.bench_serving'] + bench_args
    return ['docker', 'run', '--rm', '--network', 'host', '-v', '/tmp:/tmp', '-e', 'HF_TOKEN',
        '-e', 'HF_HOME=/root/.cache/huggingface', image, 'python3', '-m', 'sglang.bench_serving'] + bench_args


def _metric_mean(data, key):
    """bench_serving writes either `<key>` or `mean_<key>`, sometimes as a {mean, p99, ...} dict."""
    value = data.get(key, data.get(f'mean_{key}'))
    if isinstance(value, dict):
        value = value.get('mean')
    return value


def parse_benchmark_output( file_path ):
    """
    Parse a bench_serving output file (JSON lines; the last non-empty line
    is the main run) into a metrics dictionary.
    Returns None when the file is missing, empty or not JSON.
    """
    if not os.path.isfile(file_path):
        return None
    with open(file_path, 'r', encoding='utf-8') as fp:
        lines = [line.strip() for line in fp if line.strip()]
    if not lines:
        return None
    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError:
        log.error(f'Benchmark output {file_path} is not valid JSON')
        return None
    output_tput = data.get('output_throughput')
    return {
        'output_throughput': output_tput,
        'total_throughput': data.get('total_throughput', output_tput),
        'request_throughput': data.get('request_throughput'),
        'input_throughput': data.get('input_throughput'),
        'ttft_ms': _metric_mean(data, 'ttft_ms'),
        'tpot_ms': _metric_mean(data, 'tpot_ms'),
        'itl_ms': _metric_mean(data, 'itl_ms'),
        'e2e_ms': _metric_mean(data, 'e2e_latency_ms'),
        'total_time': data.get('total_time', data.get('duration')),
        'completed': data.get('completed', data.get('num_prompts')),
        'failed': data.get('failed', 0),
        'num_prompts': data.get('num_prompts'),
        'request_rate': data.get('request_rate'),
    }



def base_url( host=DEFAULT_HOST, port=30000 ):
    return f'http://{host}:{port}'


def check_server( host=DEFAULT_HOST, port=30000, session=None, timeout=5 ):
    session = session or requests
    try:
        resp = session.get(f'{base_url(host, port)}/health', timeout=timeout)
    except requests.exceptions.RequestException:
        return False
    return resp.status_code == 200


def get_served_model( host=DEFAULT_HOST, port=30000, session=None, timeout=10 ):
    """Id of the first model in /v1/models, 'unknown' when unavailable."""
    session = session or requests
    try:
        resp = session.get(f'{base_url(host, port)}/v1/models', timeout=timeout)
        resp.raise_for_status()
        return resp.json()['data'][0]['id']
    except (requests.exceptions.RequestException, ValueError, KeyError, IndexError):
        return 'unknown'


def chat_completion( model, content, max_tokens, host=DEFAULT_HOST, port=30000, session=None, timeout=120 ):
    session = session or requests
    payload = {'model': model, 'messages': [{'role': 'user', 'content': content}], 'max_tokens': max_tokens}
    resp = session.post(f'{base_url(host, port)}/v1/chat/completions', json=payload, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def warmup( model, host=DEFAULT_HOST, port=30000, session=None ):
    """One small chat request; failures are ignored. Returns elapsed seconds."""
    start = time.time()
    try:
        chat_completion(model, 'Hello, please respond with OK.', 10, host, port, session)
    except (requests.exceptions.RequestException, ValueError) as e:
        log.warning(f'Warmup request failed: {e}')
    return time.time() - start


def probe_chat_completion( model, host=DEFAULT_HOST, port=30000, session=None ):
    """True when a tiny chat completion comes back with choices."""
    try:
        data = chat_completion(model, 'Say OK', 5, host, port, session)
    except (requests.exceptions.RequestException, ValueError) as e:
        log.warning(f'Inference probe failed: {e}')
        return False
    return 'choices' in data



def run_benchmark( bench, model, image, output_dir, host=DEFAULT_HOST, port=30000, use_docker=True,
        timeout=DEFAULT_BENCH_TIMEOUT, hf_token=None, session=None, runner=subprocess.run ):
    """
    Health check, warmup, bench_serving, then copy the output JSON to
    output_dir/bench_<profile>_<timestamp>.json.

    Returns (output_file, metrics).
    Raises BenchmarkError when the server is down, the process fails or
    times out, or no output is produced.
    """
    print_msg('Step 1/3: Checking server health...')
    if not check_server(host, port, session):
        raise BenchmarkError(f'Server is not responding at {base_url(host, port)}',
            remediation=f'Make sure the cluster is running:\n  sparkctl launch\n\n'
                f'Then check health:\n  curl {base_url(host, port)}/health')
    print_msg('  Server is healthy')
    print_msg(f'  Serving model: {get_served_model(host, port, session)}')

    print_msg('Step 2/3: Warming up...')
    print_msg(f'  Warmup completed in {warmup(model, host, port, session):.2f}s')

    print_msg('Step 3/3: Running benchmark...')
    os.makedirs(output_dir, exist_ok=True)
    output_file = os.path.join(output_dir, f'bench_{bench.profile}_{datetime.now().strftime("%Y%m%d_%H%M%S")}.json')
    if os.path.exists(BENCH_TMP_OUTPUT):
        os.remove(BENCH_TMP_OUTPUT)
    cmd = build_bench_command(build_bench_serving_args(bench, model, host, port), image, use_docker)
    log.info(f'cmd = {" ".join(cmd)}')
    env = dict(os.environ)
    env['HF_TOKEN'] = hf_token or env.get('HF_TOKEN', '')
    try:
        proc = runner(cmd, timeout=timeout, env=env)
    except subprocess.TimeoutExpired:
        raise BenchmarkError(f'Benchmark timed out after {timeout}s')
    except OSError as e:
        raise BenchmarkError(f'Could not run benchmark: {e}')
    if proc.returncode != 0:
        raise BenchmarkError(f'Benchmark exited with code {proc.returncode}')
    if not os.path.isfile(BENCH_TMP_OUTPUT):
        raise BenchmarkError('No output file generated',
            remediation='Check if the benchmark completed successfully')
    shutil.copyfile(BENCH_TMP_OUTPUT, output_file)
    return output_file, parse_benchmark_output(output_file)


def _fmt(value, scale=1.0, digits=2):
    if value is None:
        return 'N/A'
    return f'{value / scale:.{digits}f}'


def print_benchmark_results( bench, metrics, output_file ):
    print('  Test Configuration:')
    print(f'    Profile:              {bench.profile}')
    print(f'    Num Prompts:          {metrics.get("num_prompts") or bench.num_prompts}')
    print(f'    Request Rate:         {metrics.get("request_rate") or bench.request_rate} req/s')
    print(f'    Input Length:         {bench.input_len} tokens')
    print(f'    Output Length:        {bench.output_len} tokens')
    print('')
    print('  Throughput Metrics:')
    print(f'    Total Duration:       {_fmt(metrics.get("total_time"))}s')
    print(f'    Requests/sec:         {_fmt(metrics.get("request_throughput"))}')
    print(f'    Input tok/s:          {_fmt(metrics.get("input_throughput"))}')
    print(f'    Output tok/s:         {_fmt(metrics.get("output_throughput"))}')
    print(f'    Total tok/s:          {_fmt(metrics.get("total_throughput"))}')
    print('')
    print('  Latency Metrics (seconds):')
    print(f'    TTFT Mean:            {_fmt(metrics.get("ttft_ms"), 1000, 3)}s')
    print(f'    TPOT Mean:            {_fmt(metrics.get("tpot_ms"), 1000, 4)}s')
    print(f'    ITL Mean:             {_fmt(metrics.get("itl_ms"), 1000, 4)}s')
    print(f'    E2E Mean:             {_fmt(metrics.get("e2e_ms"), 1000, 3)}s')
    print('')
    print('  Request Statistics:')
    print(f'    Completed:            {metrics.get("completed")}')
    print(f'    Failed:               {metrics.get("failed")}')
    print('')
    print(f'  Results saved to: {output_file}')
