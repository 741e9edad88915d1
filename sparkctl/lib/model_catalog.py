'''
Catalog of models the cluster can serve and the rules that derive their
launch settings.
'''

from dataclasses import dataclass
from typing import Optional

from sparkctl.lib.utils_lib import ConfigurationError


@dataclass(frozen=True)
class ModelProfile:
    model_id: str
    description: str
    short_name: str
    tp: int = 2
    nodes: int = 2
    mem_fraction: float = 0.90
    reasoning_parser: Optional[str] = None
    tool_call_parser: Optional[str] = None
    trust_remote_code: bool = False
    gated: bool = False


CATALOG = [
    ModelProfile('openai/gpt-oss-120b', 'GPT-OSS-120B (120B params, MoE, ~80GB+, heavy, high quality)',
        'GPT-OSS-120B', reasoning_parser='gpt-oss', tool_call_parser='gpt-oss'),
    ModelProfile('openai/gpt-oss-20b', 'GPT-OSS-20B (21B params, MoE, ~16-20GB, fast)',
        'GPT-OSS-20B', reasoning_parser='gpt-oss', tool_call_parser='gpt-oss'),
    ModelProfile('Qwen/Qwen2.5-7B-Instruct', 'Qwen2.5-7B (7B params, ~7GB, very fast)', 'Qwen2.5-7B'),
    ModelProfile('Qwen/Qwen2.5-14B-Instruct', 'Qwen2.5-14B (14B params, ~14GB, fast)', 'Qwen2.5-14B'),
    ModelProfile('Qwen/Qwen2.5-32B-Instruct', 'Qwen2.5-32B (32B params, ~30GB, strong mid-size)', 'Qwen2.5-32B'),
    ModelProfile('Qwen/Qwen2.5-72B-Instruct', 'Qwen2.5-72B (72B params, ~70GB, slow, high quality)', 'Qwen2.5-72B'),
    ModelProfile('mistralai/Mistral-7B-Instruct-v0.3', 'Mistral-7B v0.3 (7B params, ~7GB, very fast)', 'Mistral-7B'),
    ModelProfile('mistralai/Mistral-Nemo-Instruct-2407', 'Mistral-Nemo-12B (12B params, ~12GB, 128k context)',
        'Mistral-Nemo-12B'),
    ModelProfile('mistralai/Mixtral-8x7B-Instruct-v0.1', 'Mixtral-8x7B (47B total, 12B active, ~45GB, MoE, fast)',
        'Mixtral-8x7B'),
    ModelProfile('meta-llama/Llama-3.1-8B-Instruct', 'Llama-3.1-8B (8B params, ~8GB, very fast)',
        'Llama-3.1-8B', tool_call_parser='llama3', gated=True),
    ModelProfile('meta-llama/Llama-3.1-70B-Instruct', 'Llama-3.1-70B (70B params, ~65GB, high quality)',
        'Llama-3.1-70B', tool_call_parser='llama3', gated=True),
    ModelProfile('microsoft/phi-4', 'Phi-4 (15B params, ~14-16GB, small but smart)', 'Phi-4',
        trust_remote_code=True),
    ModelProfile('google/gemma-2-27b-it', 'Gemma2-27B (27B params, ~24-28GB, strong mid-size)', 'Gemma2-27B',
        gated=True),
    ModelProfile('deepseek-ai/DeepSeek-V2-Lite-Chat', 'DeepSeek-V2-Lite (16B MoE, ~12-16GB, very fast, reasoning tuned)',
        'DeepSeek-V2-Lite', reasoning_parser='deepseek', trust_remote_code=True),
]

# (predicate, flag) pairs; every matching rule contributes its flag
EXTRA_ARG_RULES = [
    (lambda profile: profile.nodes > 1, '--enable-dp-attention'),
    (lambda profile: profile.trust_remote_code, '--trust-remote-code'),
]


def build_extra_args( profile ):
    return ' '.join(flag for predicate, flag in EXTRA_ARG_RULES if predicate(profile))


def get_model_by_number( number ):
    """1-based catalog lookup; raises ConfigurationError when out of range."""
    try:
        index = int(number)
    except (TypeError, ValueError):
        raise ConfigurationError(f'Invalid model number: {number}',
            remediation='List the available models with: sparkctl switch --list')
    if index < 1 or index > len(CATALOG):
        raise ConfigurationError(f'Invalid model number: {number} (choose 1-{len(CATALOG)})',
            remediation='List the available models with: sparkctl switch --list')
    return CATALOG[index - 1]


def find_model( model_id ):
    for profile in CATALOG:
        if profile.model_id == model_id:
            return profile
    return None


def catalog_index( profile ):
    return CATALOG.index(profile)


def model_config_values( profile ):
    """Managed config.local.env values for a catalog entry."""
    return {
        'MODEL': profile.model_id,
        'TENSOR_PARALLEL': profile.tp,
        'NUM_NODES': profile.nodes,
        'MEM_FRACTION': f'{profile.mem_fraction:.2f}',
        'REASONING_PARSER': profile.reasoning_parser or '',
        'TOOL_CALL_PARSER': profile.tool_call_parser or '',
        'TRUST_REMOTE_CODE': profile.trust_remote_code,
        'EXTRA_ARGS': build_extra_args(profile),
    }


def format_model_listing( current_model=None ):
    """Numbered model list, marking the current model and gated ones."""
    lines = ['Available models:', '']
    for number, profile in enumerate(CATALOG, start=1):
        marker = '*' if profile.model_id == current_model else ' '
        notes = []
        if profile.nodes > 1:
            notes.append(f'{profile.nodes} nodes')
        else:
            notes.append('single node')
        if profile.gated:
            notes.append('needs HF_TOKEN')
        lines.append(f' {marker}{number:2d}. {profile.description}')
        lines.append(f'      {profile.model_id} [{", ".join(notes)}]')
    lines.append('')
    lines.append('  * = current model')
    return '\n'.join(lines)
