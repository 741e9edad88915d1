# std libs
import os
from typing import Annotated, Dict, Optional, Tuple

# pypdantic libs
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PositiveInt = Annotated[int, Field(gt=0)]
Port = Annotated[int, Field(gt=0, lt=65536)]

GPT_OSS_PARSER = 'gpt-oss'


class ClusterSettings(BaseModel):
    """
    Layered cluster configuration, built once from defaults, the process
    environment, config.env and config.local.env (later wins).

    Field aliases are the environment variable names used in the config
    files, so a merged {KEY: value} dictionary validates directly.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    # Container
    image: str = Field('lmsysorg/sglang:spark', alias='SGLANG_IMAGE')
    head_container_name: str = Field('sglang-head', alias='HEAD_CONTAINER_NAME')
    worker_container_name: str = Field('sglang-worker', alias='WORKER_CONTAINER_NAME')
    shm_size: str = Field('32g', alias='SHM_SIZE')

    # Model
    model: str = Field('openai/gpt-oss-120b', alias='MODEL')
    tensor_parallel: PositiveInt = Field(2, alias='TENSOR_PARALLEL')
    pipeline_parallel: PositiveInt = Field(1, alias='PIPELINE_PARALLEL')
    num_nodes: PositiveInt = Field(2, alias='NUM_NODES')
    mem_fraction: float = Field(0.80, alias='MEM_FRACTION', gt=0.0, le=1.0)
    reasoning_parser: Optional[str] = Field(None, alias='REASONING_PARSER')
    tool_call_parser: Optional[str] = Field(None, alias='TOOL_CALL_PARSER')
    trust_remote_code: bool = Field(False, alias='TRUST_REMOTE_CODE')
    disable_cuda_graph: bool = Field(True, alias='DISABLE_CUDA_GRAPH')
    extra_args: str = Field('', alias='EXTRA_ARGS')

    # Ports and paths
    sglang_port: Port = Field(30000, alias='SGLANG_PORT')
    dist_init_port: Port = Field(50000, alias='DIST_INIT_PORT')
    hf_cache: str = Field('/raid/hf-cache', alias='HF_CACHE')
    tiktoken_dir: str = Field('~/tiktoken_encodings', alias='TIKTOKEN_DIR')
    hf_token: Optional[str] = Field(None, alias='HF_TOKEN')

    # NCCL
    nccl_debug: str = Field('INFO', alias='NCCL_DEBUG')
    nccl_ib_disable: str = Field('0', alias='NCCL_IB_DISABLE')
    nccl_net_gdr_level: str = Field('5', alias='NCCL_NET_GDR_LEVEL')
    nccl_timeout: str = Field('1200000', alias='NCCL_TIMEOUT')
    nccl_socket_ifname: Optional[str] = Field(None, alias='NCCL_SOCKET_IFNAME')
    gloo_socket_ifname: Optional[str] = Field(None, alias='GLOO_SOCKET_IFNAME')
    nccl_ib_hca: Optional[str] = Field(None, alias='NCCL_IB_HCA')

    # Topology
    head_ip: Optional[str] = Field(None, alias='HEAD_IP')
    worker_host: str = Field('', alias='WORKER_HOST')
    worker_ib_ip: str = Field('', alias='WORKER_IB_IP')
    worker_ips: str = Field('', alias='WORKER_IPS')
    worker_user: Optional[str] = Field(None, alias='WORKER_USER')
    ssh_pkey: str = Field('~/.ssh/id_rsa', alias='SSH_PKEY')

    @model_validator(mode='before')
    @classmethod
    def drop_empty_values(cls, data):
        """
        An empty assignment (KEY="") means "not set" for everything except
        the free-form string settings, which may legitimately be cleared.
        """
        if not isinstance(data, dict):
            return data
        keep_empty = {'EXTRA_ARGS', 'extra_args', 'WORKER_HOST', 'worker_host', 'WORKER_IB_IP',
                      'worker_ib_ip', 'WORKER_IPS', 'worker_ips'}
        return {key: value for key, value in data.items() if value != '' or key in keep_empty}

    @field_validator('tiktoken_dir', 'hf_cache', 'ssh_pkey')
    @classmethod
    def expand_user(cls, v: str) -> str:
        return os.path.expanduser(v)

    @property
    def fabric_addresses(self) -> str:
        """WORKER_IB_IP, falling back to the legacy WORKER_IPS."""
        return self.worker_ib_ip or self.worker_ips

    @property
    def effective_reasoning_parser(self) -> Optional[str]:
        if self.reasoning_parser:
            return self.reasoning_parser
        if GPT_OSS_PARSER in self.model:
            return GPT_OSS_PARSER
        return None

    @property
    def effective_tool_call_parser(self) -> Optional[str]:
        if self.tool_call_parser:
            return self.tool_call_parser
        if GPT_OSS_PARSER in self.model:
            return GPT_OSS_PARSER
        return None


class WorkerNode(BaseModel):
    """One remote rank: fabric address for NCCL, management address for SSH."""
    model_config = ConfigDict(frozen=True)

    rank: PositiveInt
    fabric_ip: str
    host: str


class ClusterSpec(BaseModel):
    """
    Resolved, internally consistent cluster topology. Rank 0 is always the
    local head node; workers carry ranks 1..N-1 in configuration order.
    """
    model_config = ConfigDict(frozen=True)

    num_nodes: PositiveInt
    declared_num_nodes: PositiveInt
    head_ip: str
    dist_init_port: Port
    model: str
    tensor_parallel: PositiveInt
    pipeline_parallel: PositiveInt
    mem_fraction: float
    env_overrides: Dict[str, str] = Field(default_factory=dict)
    workers: Tuple[WorkerNode, ...] = ()
    worker_user: str
    head_only: bool = False
    warnings: Tuple[str, ...] = ()

    @model_validator(mode='after')
    def validate_ranks(self):
        ranks = [worker.rank for worker in self.workers]
        if ranks != list(range(1, len(ranks) + 1)):
            raise ValueError(f'worker ranks must be contiguous from 1, got {ranks}')
        if len(self.workers) > self.num_nodes - 1:
            raise ValueError(f'{len(self.workers)} workers do not fit in {self.num_nodes} nodes')
        return self

    @property
    def dist_init_addr(self) -> str:
        return f'{self.head_ip}:{self.dist_init_port}'

    def worker_ranks(self):
        return [worker.rank for worker in self.workers]
