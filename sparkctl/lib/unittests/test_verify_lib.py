import os
import tempfile
import unittest
from unittest.mock import MagicMock

import sparkctl.lib.verify_lib as verify_lib


def handle(outputs):
    hdl = MagicMock()

    def _exec(cmd, **kwargs):
        for prefix, out in outputs.items():
            if cmd.startswith(prefix):
                return {"localhost": out}
        return {"localhost": ""}

    hdl.exec.side_effect = _exec
    return hdl


class TestVerifyLib(unittest.TestCase):
    def test_docker_installed(self):
        self.assertEqual(verify_lib.verify_docker_installed(handle({"command -v docker": "/usr/bin/docker\n"})).status,
            verify_lib.PASS)
        self.assertEqual(verify_lib.verify_docker_installed(handle({"command -v docker": "missing\n"})).status,
            verify_lib.FAIL)

    def test_docker_running(self):
        self.assertEqual(verify_lib.verify_docker_running(handle({"docker ps": "CONTAINER ID  IMAGE"})).status,
            verify_lib.PASS)
        self.assertEqual(verify_lib.verify_docker_running(handle({"docker ps": "Cannot connect"})).status,
            verify_lib.FAIL)

    def test_nvidia_smi(self):
        result = verify_lib.verify_nvidia_smi(handle({"nvidia-smi": "NVIDIA GB10\n"}))
        self.assertEqual(result.status, verify_lib.PASS)
        self.assertEqual(result.detail, "NVIDIA GB10")
        failed = verify_lib.verify_nvidia_smi(handle({"nvidia-smi": "bash: nvidia-smi: command not found\nNVSMI_FAILED"}))
        self.assertEqual(failed.status, verify_lib.FAIL)

    def test_infiniband(self):
        hdl = handle({"test -e /dev/infiniband": "present", "ibdev2netdev": "mlx5_0 port 1 ==> enp1s0f0np0 (Up)"})
        self.assertEqual(verify_lib.verify_infiniband(hdl).status, verify_lib.PASS)
        self.assertEqual(verify_lib.verify_infiniband(handle({"test -e": "absent"})).status, verify_lib.WARN)

    def test_infiniband_port_state_case(self):
        hdl = handle({"test -e /dev/infiniband": "present", "ibdev2netdev": (
            "mlx5_0 port 1 ==> enp1s0f0np0 (up)\n"
            "mlx5_1 port 1 ==> enp1s0f1np1 (DOWN)\n")})
        result = verify_lib.verify_infiniband(hdl)
        self.assertEqual(result.status, verify_lib.PASS)
        self.assertEqual(result.detail, "mlx5_0 -> enp1s0f0np0")
        down = handle({"test -e /dev/infiniband": "present", "ibdev2netdev": "mlx5_0 port 1 ==> enp1s0f0np0 (Down)"})
        self.assertEqual(verify_lib.verify_infiniband(down).status, verify_lib.WARN)

    def test_worker_ssh(self):
        reachable = MagicMock()
        reachable.check_connectivity.return_value = []
        unreachable = MagicMock()
        unreachable.check_connectivity.return_value = ["10.0.0.3"]
        hdls = {"10.0.0.2": reachable, "10.0.0.3": unreachable}
        results = verify_lib.verify_worker_ssh(lambda host, user: hdls[host], ["10.0.0.2", "10.0.0.3"], "spark")
        self.assertEqual([result.status for result in results], [verify_lib.PASS, verify_lib.FAIL])
        self.assertEqual(results[1].name, "ssh spark@10.0.0.3")

    def test_hf_cache(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            self.assertEqual(verify_lib.verify_hf_cache(tmp_dir).status, verify_lib.PASS)
            self.assertEqual(verify_lib.verify_hf_cache(os.path.join(tmp_dir, "hf-cache")).status, verify_lib.WARN)

    def test_summarize(self):
        results = [verify_lib.CheckResult("a", verify_lib.PASS), verify_lib.CheckResult("b", verify_lib.FAIL),
            verify_lib.CheckResult("c", verify_lib.PASS)]
        self.assertEqual(verify_lib.summarize(results), {"PASS": 2, "WARN": 0, "FAIL": 1})


if __name__ == "__main__":
    unittest.main()
