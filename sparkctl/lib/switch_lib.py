'''
Model switcher: rewrite the managed model keys of config.local.env and
optionally restart the cluster on the new model.
'''

import time

from sparkctl.lib import globals
from sparkctl.lib import benchmark_lib
from sparkctl.lib import cluster_lib
from sparkctl.lib import config_lib
from sparkctl.lib.model_catalog import model_config_values
from sparkctl.lib.readiness_lib import Verdict
from sparkctl.lib.utils_lib import SparkctlError, print_banner, print_msg, print_warning

log = globals.log

SWITCH_READY_TIMEOUT = 600


def confirm_prompt( question ):
    answer = input(f'{question} (y/N): ')
    return answer.strip().lower() in ('y', 'yes')


def check_gated_access( config_dir, profile, confirm=confirm_prompt, environ=None ):
    """
    Warn when a gated model is selected without HF_TOKEN and let the
    operator continue or abort. Aborting raises SparkctlError.
    """
    if not profile.gated or config_lib.has_hf_token(config_dir, environ):
        return True
    print_warning(f'{profile.model_id} is a gated model and no HF_TOKEN is configured')
    print('  Get a token at https://huggingface.co/settings/tokens and accept the model license, then:')
    print('    export HF_TOKEN="hf_..."')
    print('  Or add to config.local.env:')
    print('    HF_TOKEN="hf_..."')
    if not confirm('Continue anyway?'):
        raise SparkctlError('Model switch aborted', remediation='Set HF_TOKEN and run the switch again')
    return True


def apply_model_config( config_dir, profile ):
    values = model_config_values(profile)
    path = config_lib.update_local_config(config_dir, values)
    print_msg(f'  Configuration saved to: {path}')
    return path


def restart_with_model( config_dir, profile, start=None, stop=None, sleep=time.sleep ):
    """
    Stop the cluster and relaunch it on the freshly written configuration
    (head-only for single-node models, image pull skipped), then report
    the loaded model and run an inference probe.

    Returns the ReadinessState of the relaunch.
    """
    settings = config_lib.load_settings(config_dir)
    start = start or cluster_lib.start_cluster
    stop = stop or cluster_lib.stop_cluster

    print_msg('Step 2/4: Stopping existing cluster...')
    stop(settings)

    print_msg('Step 3/4: Starting cluster with new model...')
    print_msg('Step 4/4: Waiting for API to become ready...')
    started = time.time()
    state = start(settings, head_only=profile.nodes == 1, skip_pull=True, ready_timeout=SWITCH_READY_TIMEOUT,
        sleep=sleep, print_summary=False)
    elapsed = int(time.time() - started)

    port = settings.sglang_port
    api_url = benchmark_lib.base_url(port=port)
    print_banner('Model Switch Complete')
    print(f'  Model:        {benchmark_lib.get_served_model(port=port)}')
    print(f'  API:          {api_url}')
    print(f'  Health:       {api_url}/health')
    print(f'  Time:         {elapsed}s')
    print('')
    if state.verdict == Verdict.READY:
        print('Testing inference...')
        if benchmark_lib.probe_chat_completion(profile.model_id, port=port):
            print('  Inference test: PASSED')
        else:
            print('  Inference test: FAILED (check logs)')
    else:
        print(f'  Check logs: docker logs {settings.head_container_name}')
    return state


def switch_model( config_dir, profile, skip_restart=False, confirm=confirm_prompt, start=None, stop=None,
        sleep=time.sleep ):
    """
    Switch the configured model. Returns the relaunch ReadinessState, or
    None when the restart is skipped.
    """
    current = config_lib.get_current_model(config_dir)
    print_banner('SGLang Model Switch')
    print_msg(f'  Current model: {current or "(not set)"}')
    print_msg(f'  New model:     {profile.model_id}')
    check_gated_access(config_dir, profile, confirm)

    print_msg('Step 1/4: Updating configuration...')
    apply_model_config(config_dir, profile)

    if skip_restart:
        print_banner('Configuration Updated (restart skipped)')
        print('To start the cluster with the new model:')
        print('  sparkctl launch' if profile.nodes > 1 else '  sparkctl launch --head-only')
        print('')
        return None
    return restart_with_model(config_dir, profile, start=start, stop=stop, sleep=sleep)
