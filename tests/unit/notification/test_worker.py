#!/usr/bin/env python3
"""
Tests for the RQ worker entry point and job bootstrap.
"""

import unittest
from unittest.mock import Mock, patch

from redis.exceptions import RedisError

from core.config_loader import AppConfig
from notification import jobs as jobs_module
from notification.worker import start_worker


class TestStartWorker(unittest.TestCase):

    def setUp(self):
        self.config = AppConfig()

    @patch('notification.worker.Worker')
    @patch('notification.worker.Redis')
    @patch('notification.worker.init_jobs')
    @patch('notification.worker.load_config')
    def test_burst_uses_configured_queue(self, mock_load, mock_init, mock_redis, mock_worker):
        mock_load.return_value = self.config

        start_worker(burst=True, config_path="herald.yaml")

        mock_load.assert_called_once_with("herald.yaml")
        mock_init.assert_called_once_with(self.config)
        mock_redis.from_url.assert_called_once_with(self.config.redis.url)
        mock_worker.assert_called_once_with(["notifications"], connection=mock_redis.from_url.return_value)
        mock_worker.return_value.work.assert_called_once_with(burst=True)

    @patch('notification.worker.Worker')
    @patch('notification.worker.Redis')
    @patch('notification.worker.init_jobs')
    @patch('notification.worker.load_config')
    def test_redis_failure_exits(self, mock_load, mock_init, mock_redis, mock_worker):
        mock_load.return_value = self.config
        mock_redis.from_url.return_value.ping.side_effect = RedisError("connection refused")

        with self.assertRaises(SystemExit):
            start_worker(queues=["herald"])

        mock_worker.assert_not_called()


class TestJobBootstrap(unittest.TestCase):

    def setUp(self):
        patcher = patch.object(jobs_module, '_jobs', None)
        patcher.start()
        self.addCleanup(patcher.stop)

    @patch('notification.jobs.AppContext')
    @patch('notification.jobs.database')
    def test_init_jobs_binds_database(self, mock_database, mock_context):
        config = AppConfig()

        built = jobs_module.init_jobs(config)

        mock_database.configure.assert_called_once_with(config.database.url)
        mock_context.build.assert_called_once_with(config)
        self.assertIs(jobs_module.get_jobs(), built)
        self.assertEqual(built.sweep_limit, config.schedule.sweep_limit)

    @patch('notification.jobs.init_jobs')
    @patch('notification.jobs.load_config')
    def test_get_jobs_loads_default_config_once(self, mock_load, mock_init):
        mock_init.return_value = Mock()

        self.assertIs(jobs_module.get_jobs(), mock_init.return_value)
        mock_load.assert_called_once_with()
        mock_init.assert_called_once_with(mock_load.return_value)


if __name__ == '__main__':
    unittest.main()
