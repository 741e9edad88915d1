import unittest
from unittest.mock import MagicMock, patch

from sparkctl.lib import cluster_lib
from sparkctl.lib.readiness_lib import CleanExitPolicy, ReadinessState, Verdict
from sparkctl.lib.utils_lib import ReadinessError
from sparkctl.schema.cluster import ClusterSettings


def make_settings(**values):
    values.setdefault('WORKER_USER', 'spark')
    return ClusterSettings(**values)


class TestWorkerHosts(unittest.TestCase):
    def test_management_address_preferred(self):
        settings = make_settings(WORKER_IB_IP='169.254.0.2 169.254.0.3', WORKER_HOST='192.168.1.101')
        self.assertEqual(cluster_lib.worker_hosts(settings), ['192.168.1.101', '169.254.0.3'])

    def test_legacy_worker_ips(self):
        settings = make_settings(WORKER_IPS='10.0.0.2')
        self.assertEqual(cluster_lib.worker_hosts(settings), ['10.0.0.2'])

    def test_no_workers(self):
        self.assertEqual(cluster_lib.worker_hosts(make_settings()), [])


@patch('sparkctl.lib.cluster_lib.print_warning')
@patch('sparkctl.lib.cluster_lib.print_msg')
class TestStopCluster(unittest.TestCase):
    def setUp(self):
        self.local = MagicMock()
        self.remotes = {}

    def factory(self, host, user):
        hdl = MagicMock()
        hdl.check_connectivity.return_value = [host] if host.endswith('.99') else []
        self.remotes[host] = hdl
        return hdl

    def test_stops_head_and_reachable_workers(self, mock_msg, mock_warning):
        settings = make_settings(WORKER_IB_IP='169.254.0.2 169.254.0.3', WORKER_HOST='10.0.0.2 10.0.0.99')
        cluster_lib.stop_cluster(settings, local_hdl=self.local, remote_factory=self.factory)

        self.assertIn('docker rm -f sglang-head', self.local.exec.call_args[0][0])
        self.remotes['10.0.0.2'].exec.assert_called_once()
        self.assertIn("grep '^sglang-worker'", self.remotes['10.0.0.2'].exec.call_args[0][0])
        self.remotes['10.0.0.99'].exec.assert_not_called()
        mock_warning.assert_called_once()

    def test_head_only(self, mock_msg, mock_warning):
        settings = make_settings(WORKER_IB_IP='169.254.0.2')
        factory = MagicMock()
        cluster_lib.stop_cluster(settings, head_only=True, local_hdl=self.local, remote_factory=factory)
        self.local.exec.assert_called_once()
        factory.assert_not_called()


@patch('sparkctl.lib.cluster_lib.print_warning')
@patch('sparkctl.lib.cluster_lib.print_msg')
class TestCheckReadinessVerdict(unittest.TestCase):
    def test_ready(self, mock_msg, mock_warning):
        cluster_lib.check_readiness_verdict(ReadinessState(verdict=Verdict.READY, message='ready'), 'sglang-head')
        mock_warning.assert_not_called()

    def test_failed_raises(self, mock_msg, mock_warning):
        state = ReadinessState(verdict=Verdict.FAILED, message='Head container exited with code 1')
        with self.assertRaises(ReadinessError) as ctx:
            cluster_lib.check_readiness_verdict(state, 'sglang-head')
        self.assertIn('docker logs sglang-head', ctx.exception.remediation)

    def test_timed_out_warns(self, mock_msg, mock_warning):
        cluster_lib.check_readiness_verdict(ReadinessState(verdict=Verdict.TIMED_OUT, message='timeout'),
            'sglang-head')
        self.assertIn('docker logs -f sglang-head', mock_warning.call_args[0][0])

    def test_cancelled_warns(self, mock_msg, mock_warning):
        cluster_lib.check_readiness_verdict(ReadinessState(verdict=Verdict.CANCELLED), 'sglang-head')
        mock_warning.assert_called_once()


@patch('sparkctl.lib.cluster_lib.print_cluster_summary')
@patch('sparkctl.lib.cluster_lib.print_configuration')
@patch('sparkctl.lib.cluster_lib.print_banner')
@patch('sparkctl.lib.cluster_lib.print_msg')
@patch('sparkctl.lib.cluster_lib.build_head_poller')
@patch('sparkctl.lib.cluster_lib.ClusterLauncher')
@patch('sparkctl.lib.cluster_lib.resolve_topology')
@patch('sparkctl.lib.cluster_lib.linux_utils.detect_network')
class TestStartCluster(unittest.TestCase):
    def test_launch_then_wait(self, mock_network, mock_resolve, mock_launcher, mock_poller, mock_msg,
            mock_banner, mock_config, mock_summary):
        settings = make_settings()
        mock_resolve.return_value = MagicMock(num_nodes=2)
        mock_poller.return_value.run.return_value = ReadinessState(verdict=Verdict.READY, message='ready')
        local = MagicMock()

        state = cluster_lib.start_cluster(settings, skip_pull=True, ready_timeout=120, local_hdl=local,
            clean_exit_policy=CleanExitPolicy.FATAL)

        self.assertEqual(state.verdict, Verdict.READY)
        mock_launcher.return_value.launch.assert_called_once_with(skip_pull=True)
        self.assertEqual(mock_poller.call_args[1]['budget'], 120)
        self.assertEqual(mock_poller.call_args[1]['clean_exit_policy'], CleanExitPolicy.FATAL)
        self.assertTrue(mock_summary.call_args[0][2])

    def test_workers_joined_after_readiness_verdict(self, mock_network, mock_resolve, mock_launcher, mock_poller,
            mock_msg, mock_banner, mock_config, mock_summary):
        calls = []
        mock_resolve.return_value = MagicMock(num_nodes=2)
        launcher = mock_launcher.return_value
        launcher.launch.side_effect = lambda **kw: calls.append('launch') or 'launch-result'
        launcher.join_workers.side_effect = lambda result: calls.append(('join', result))
        mock_poller.return_value.run.side_effect = lambda: calls.append('poll') or ReadinessState(
            verdict=Verdict.READY, message='ready')

        cluster_lib.start_cluster(make_settings(), local_hdl=MagicMock())

        self.assertEqual(calls, ['launch', 'poll', ('join', 'launch-result')])

    def test_failed_readiness_raises(self, mock_network, mock_resolve, mock_launcher, mock_poller, mock_msg,
            mock_banner, mock_config, mock_summary):
        mock_resolve.return_value = MagicMock(num_nodes=1)
        mock_poller.return_value.run.return_value = ReadinessState(verdict=Verdict.FAILED, message='exited')
        with self.assertRaises(ReadinessError):
            cluster_lib.start_cluster(make_settings(), head_only=True, local_hdl=MagicMock())
        mock_summary.assert_not_called()

    def test_summary_suppressed(self, mock_network, mock_resolve, mock_launcher, mock_poller, mock_msg,
            mock_banner, mock_config, mock_summary):
        mock_resolve.return_value = MagicMock(num_nodes=1)
        mock_poller.return_value.run.return_value = ReadinessState(verdict=Verdict.READY)
        cluster_lib.start_cluster(make_settings(), local_hdl=MagicMock(), print_summary=False)
        mock_summary.assert_not_called()


if __name__ == '__main__':
    unittest.main()
