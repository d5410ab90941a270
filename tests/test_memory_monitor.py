"""
Tests for resource logging.
"""

import logging

import psutil

from mediafx.services import memory_monitor


class TestMemoryMonitor:
    """Tests for memory and disk logging."""

    def test_measures_current_process(self):
        mem = memory_monitor.get_memory_usage_mb()
        assert mem["rss"] > 0
        assert mem["vms"] > 0

    def test_measurement_failure(self, mocker):
        mocker.patch.object(psutil, "Process", side_effect=psutil.NoSuchProcess(1))
        assert memory_monitor.get_memory_usage_mb() == {"rss": 0, "vms": 0}

    def test_disk_free_for_missing_path(self, tmp_path):
        assert memory_monitor.get_workspace_disk_free_mb(str(tmp_path / "missing")) is None
        assert memory_monitor.get_workspace_disk_free_mb(str(tmp_path)) > 0

    def test_high_memory_warning(self, mocker, caplog):
        mocker.patch.object(memory_monitor, "get_memory_usage_mb", return_value={"rss": 99999.0, "vms": 0})
        mocker.patch.object(memory_monitor, "get_workspace_disk_free_mb", return_value=50000.0)

        with caplog.at_level(logging.INFO, logger="mediafx.services.memory_monitor"):
            memory_monitor.log_memory_usage("after_extraction", "job-1")

        assert "[job-1] Resources [after_extraction]" in caplog.text
        assert "HIGH MEMORY WARNING" in caplog.text
        assert "LOW DISK" not in caplog.text

    def test_low_disk_warning(self, mocker, caplog):
        mocker.patch.object(memory_monitor, "get_memory_usage_mb", return_value={"rss": 100.0, "vms": 0})
        mocker.patch.object(memory_monitor, "get_workspace_disk_free_mb", return_value=10.0)

        memory_monitor.log_memory_usage("after_acquisition")

        assert "LOW DISK WARNING" in caplog.text
