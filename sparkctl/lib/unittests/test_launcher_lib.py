import os
import tempfile
import threading
import unittest
from unittest.mock import MagicMock, patch

from sparkctl.lib.launcher_lib import (
    ClusterLauncher,
    ServerArgsBuilder,
    build_run_command,
    provision_tiktoken,
    remote_tiktoken_script,
)
from sparkctl.lib.linux_utils import NetworkInfo
from sparkctl.lib.utils_lib import LaunchError, RemoteUnreachableError
from sparkctl.schema.cluster import ClusterSettings, ClusterSpec, WorkerNode

NETWORK = NetworkInfo(interface="enp1s0f0np0", ip_address="169.254.0.1", hca_list="mlx5_0", has_infiniband=True)


class FakeHandle:
    """exec() handle answering by command prefix and recording every command."""

    def __init__(self, outputs, events=None, tag="local"):
        self.outputs = outputs
        self.commands = []
        self.events = events if events is not None else []
        self.tag = tag
        self.unreachable = []
        # when set, `docker run` blocks until the event fires
        self.gate = None

    def exec(self, cmd, timeout=None, env=None):
        self.commands.append(cmd)
        if cmd.startswith("docker run"):
            if self.gate is not None:
                self.gate.wait(5)
            self.events.append(f"run:{self.tag}")
        for prefix, out in self.outputs.items():
            if cmd.startswith(prefix):
                return {self.tag: out}
        return {self.tag: ""}

    def check_connectivity(self, hosts=None, timeout=None):
        return list(self.unreachable)


def make_settings(tmp_dir, **values):
    base = {"WORKER_USER": "spark", "TIKTOKEN_DIR": tmp_dir, "HF_CACHE": tmp_dir, "MODEL": "openai/gpt-oss-120b"}
    base.update(values)
    return ClusterSettings.model_validate(base)


def make_spec(workers=(), num_nodes=2):
    return ClusterSpec(num_nodes=num_nodes, declared_num_nodes=num_nodes, head_ip="169.254.0.1",
        dist_init_port=50000, model="openai/gpt-oss-120b", tensor_parallel=2, pipeline_parallel=1,
        mem_fraction=0.8, env_overrides={"NCCL_SOCKET_IFNAME": "enp1s0f0np0", "NCCL_IB_HCA": "mlx5_0"},
        workers=tuple(workers), worker_user="spark")


class TestServerArgsBuilder(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_for_rank_gpt_oss_parsers(self):
        settings = make_settings(self.tmp.name, EXTRA_ARGS="--enable-dp-attention")
        argv = ServerArgsBuilder.for_rank(settings, make_spec(), 1).to_argv()
        self.assertEqual(argv[:3], ["python3", "-m", "sglang.launch_server"])
        self.assertIn("--node-rank", argv)
        self.assertEqual(argv[argv.index("--node-rank") + 1], "1")
        self.assertEqual(argv[argv.index("--dist-init-addr") + 1], "169.254.0.1:50000")
        self.assertEqual(argv[argv.index("--reasoning-parser") + 1], "gpt-oss")
        self.assertEqual(argv[argv.index("--tool-call-parser") + 1], "gpt-oss")
        self.assertEqual(argv[argv.index("--mem-fraction-static") + 1], "0.80")
        self.assertIn("--disable-cuda-graph", argv)
        self.assertEqual(argv[-1], "--enable-dp-attention")

    def test_no_parser_flags_for_other_models(self):
        settings = make_settings(self.tmp.name, MODEL="Qwen/Qwen2.5-7B-Instruct")
        flags = ServerArgsBuilder.for_rank(settings, make_spec(), 0).flags()
        self.assertNotIn("--reasoning-parser", flags)
        self.assertNotIn("--tool-call-parser", flags)

    def test_explicit_parser_wins(self):
        settings = make_settings(self.tmp.name, MODEL="Qwen/Qwen3-32B", REASONING_PARSER="qwen3")
        argv = ServerArgsBuilder.for_rank(settings, make_spec(), 0).to_argv()
        self.assertEqual(argv[argv.index("--reasoning-parser") + 1], "qwen3")

    def test_build_run_command(self):
        settings = make_settings(self.tmp.name, HF_TOKEN="hf_secret")
        run_cmd = build_run_command(settings, make_spec(), 0, "sglang-head", "/home/spark/tiktoken_encodings",
            {"NCCL_SOCKET_IFNAME": "enp1s0f0np0"}, True)
        shell = run_cmd.to_shell()
        self.assertIn("--device=/dev/infiniband", shell)
        self.assertIn("-e HF_TOKEN ", shell)
        self.assertNotIn("hf_secret", shell)
        self.assertIn("NCCL_SOCKET_IFNAME=enp1s0f0np0", shell)
        self.assertIn("/home/spark/tiktoken_encodings:/tiktoken_encodings", shell)


class TestTiktoken(unittest.TestCase):
    def test_downloads_missing_files_only(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            with open(os.path.join(tmp_dir, "cl100k_base.tiktoken"), "wb") as fp:
                fp.write(b"cached")
            session = MagicMock()
            session.get.return_value.content = b"encoding-bytes"
            present = provision_tiktoken(tmp_dir, session=session)
            self.assertEqual(present, ["o200k_base", "cl100k_base"])
            session.get.assert_called_once()
            with open(os.path.join(tmp_dir, "o200k_base.tiktoken"), "rb") as fp:
                self.assertEqual(fp.read(), b"encoding-bytes")

    @patch("sparkctl.lib.launcher_lib.print_warning")
    def test_download_failure_is_warning(self, mock_warning):
        import requests

        with tempfile.TemporaryDirectory() as tmp_dir:
            session = MagicMock()
            session.get.side_effect = requests.exceptions.ConnectionError("offline")
            self.assertEqual(provision_tiktoken(tmp_dir, session=session), [])
            self.assertEqual(mock_warning.call_count, 2)

    def test_remote_script_is_idempotent(self):
        script = remote_tiktoken_script("/home/spark/tiktoken_encodings")
        self.assertIn("[ -f /home/spark/tiktoken_encodings/o200k_base.tiktoken ] ||", script)
        self.assertTrue(script.startswith("mkdir -p /home/spark/tiktoken_encodings"))


@patch("sparkctl.lib.launcher_lib.print_msg")
class TestClusterLauncher(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        for encoding in ("o200k_base", "cl100k_base"):
            with open(os.path.join(self.tmp.name, f"{encoding}.tiktoken"), "wb") as fp:
                fp.write(b"x")
        self.settings = make_settings(self.tmp.name)
        self.events = []
        self.local = FakeHandle({"docker ps --format": "sglang-head\n", "docker pull": "Status: Image is up to date"},
            self.events, tag="localhost")
        self.remotes = {}

    def remote_factory(self, host, user):
        if host not in self.remotes:
            self.remotes[host] = FakeHandle({
                "hostname -s": "spark2\n/home/spark\n",
                "ibdev2netdev": "mlx5_0 port 1 ==> enp1s0f0np0 (Up)\n",
                "ip -o -4 addr show enp1s0f0np0": "4: enp1s0f0np0 inet 169.254.0.2/16",
                "test -e /dev/infiniband": "present\n",
                "docker ps --format": "sglang-worker-spark2\n",
            }, self.events, tag=host)
        return self.remotes[host]

    def make_launcher(self, spec):
        sleep = MagicMock(side_effect=lambda _: self.events.append("settle"))
        return ClusterLauncher(self.settings, spec, network=NETWORK, local_hdl=self.local,
            remote_factory=self.remote_factory, sleep=sleep, join_timeout=5)

    def test_workers_issued_before_head(self, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101")])
        launcher = self.make_launcher(spec)
        result = launcher.join_workers(launcher.launch(skip_pull=True))
        self.assertEqual(result.issue_order, [(1, "192.168.1.101"), (0, None)])
        self.assertEqual(self.events.index("settle") < self.events.index("run:localhost"), True)
        self.assertEqual(result.worker_errors, {})
        self.assertIn(1, result.worker_requests)
        self.assertEqual(result.worker_requests[1].run_cmd.name, "sglang-worker-spark2")
        self.assertFalse(any(cmd.startswith("docker pull") for cmd in self.local.commands))

    def test_worker_uses_remote_network(self, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101")])
        launcher = self.make_launcher(spec)
        result = launcher.join_workers(launcher.launch(skip_pull=True))
        run_cmd = result.worker_requests[1].run_cmd
        self.assertIn(("NCCL_IB_HCA", "mlx5_0"), run_cmd.env)
        self.assertIn("/dev/infiniband", run_cmd.devices)
        self.assertIn(("/home/spark/tiktoken_encodings", "/tiktoken_encodings"), run_cmd.volumes)

    def test_unreachable_worker_aborts_before_any_container(self, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101"),
            WorkerNode(rank=2, fabric_ip="169.254.0.3", host="192.168.1.102")], num_nodes=3)
        self.remote_factory("192.168.1.102", "spark").unreachable = ["192.168.1.102"]
        with self.assertRaises(RemoteUnreachableError) as cm:
            self.make_launcher(spec).launch()
        self.assertIn("spark@192.168.1.102", cm.exception.message)
        self.assertEqual(self.local.commands, [])
        self.assertFalse(any(event.startswith("run:") for event in self.events))

    def test_pull_on_head_unless_skipped(self, mock_msg):
        self.make_launcher(make_spec(num_nodes=1)).launch(skip_pull=False)
        self.assertIn("docker pull lmsysorg/sglang:spark", self.local.commands)

    def test_head_only_launch(self, mock_msg):
        result = self.make_launcher(make_spec(num_nodes=1)).launch(skip_pull=True)
        self.assertEqual(result.issue_order, [(0, None)])
        self.assertNotIn("settle", self.events)
        self.assertEqual(result.head_request.run_cmd.name, "sglang-head")

    def test_rejected_head_raises(self, mock_msg):
        self.local.outputs["docker run"] = "docker: Error response from daemon: Conflict."
        with self.assertRaises(LaunchError):
            self.make_launcher(make_spec(num_nodes=1)).launch(skip_pull=True)

    @patch("sparkctl.lib.launcher_lib.print_warning")
    def test_worker_failure_is_recorded(self, mock_warning, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101")])
        self.remote_factory("192.168.1.101", "spark").outputs["docker ps --format"] = ""
        launcher = self.make_launcher(spec)
        result = launcher.join_workers(launcher.launch(skip_pull=True))
        self.assertIn(1, result.worker_errors)
        self.assertEqual(result.issue_order, [(1, "192.168.1.101"), (0, None)])
        mock_warning.assert_called()

    def test_slow_worker_does_not_hold_up_head(self, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101")])
        gate = threading.Event()
        self.addCleanup(gate.set)
        self.remote_factory("192.168.1.101", "spark").gate = gate
        launcher = self.make_launcher(spec)

        result = launcher.launch(skip_pull=True)

        # head is up and launch() returned while the worker is still starting
        self.assertIn("run:localhost", self.events)
        self.assertNotIn("run:192.168.1.101", self.events)
        self.assertEqual(list(result.pending.values()), [1])
        self.assertFalse(any(future.done() for future in result.pending))

        gate.set()
        launcher.join_workers(result)
        self.assertEqual(result.pending, {})
        self.assertIn(1, result.worker_requests)
        self.assertEqual(result.abandoned_ranks, [])

    @patch("sparkctl.lib.launcher_lib.print_warning")
    def test_pending_worker_is_abandoned(self, mock_warning, mock_msg):
        spec = make_spec([WorkerNode(rank=1, fabric_ip="169.254.0.2", host="192.168.1.101")])
        gate = threading.Event()
        self.addCleanup(gate.set)
        self.remote_factory("192.168.1.101", "spark").gate = gate
        launcher = self.make_launcher(spec)

        result = launcher.join_workers(launcher.launch(skip_pull=True), timeout=0.05)

        self.assertEqual(result.abandoned_ranks, [1])
        self.assertEqual(result.worker_requests, {})
        self.assertIn("still pending", mock_warning.call_args[0][0])


if __name__ == "__main__":
    unittest.main()
