"""
Tests for writing, validating, deleting and restarting CAN configurations.

Run with: pytest tests/test_configure.py -v
"""

import dataclasses
import logging
from unittest.mock import patch

import pytest

from cantastic.configure import (
    apply_configuration,
    delete_configuration,
    remove_scheme_files,
    restart_canbus,
)
from cantastic.detect import detect, extract_parameters
from cantastic.errors import (
    CommandError,
    InvalidParameterError,
    PreconditionError,
    ValidationError,
)
from cantastic.schemes import (
    ESOTERICAL,
    GEMINI,
    LEGACY,
    SCHEMES,
    ConfigurationScheme,
    DesiredParameters,
    resolve_path,
)

from conftest import LINK_UP, FakeSystem

INSTALLABLE = [
    ConfigurationScheme.LEGACY,
    ConfigurationScheme.ESOTERICAL,
    ConfigurationScheme.GEMINI,
]


class TestDesiredParameters:
    """Tests for parameter validation."""

    def test_valid(self):
        desired = DesiredParameters(bitrate=500000, tx_queue_length=256)
        assert desired.bitrate == 500000

    @pytest.mark.parametrize("bitrate", [0, 100000, 1000001, 2000000])
    def test_bad_bitrate(self, bitrate):
        with pytest.raises(InvalidParameterError):
            DesiredParameters(bitrate=bitrate, tx_queue_length=128)

    @pytest.mark.parametrize("qlen", [0, 10, 100, 2048])
    def test_bad_queue_length(self, qlen):
        with pytest.raises(InvalidParameterError):
            DesiredParameters(bitrate=1000000, tx_queue_length=qlen)

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            DesiredParameters(bitrate=42, tx_queue_length=128)


class TestApplyConfiguration:
    """Tests for apply_configuration()."""

    @pytest.mark.parametrize("scheme", INSTALLABLE)
    def test_round_trip(self, root, system, scheme):
        """What was applied is what a fresh detection finds."""
        desired = DesiredParameters(bitrate=250000, tx_queue_length=512)

        result = apply_configuration(scheme, desired, system, root)

        assert result.scheme == scheme
        assert result.persisted.matches(desired)
        assert detect(root) == scheme
        assert extract_parameters(scheme, root).matches(desired)
        assert sorted(result.files) == sorted(SCHEMES[scheme].resolve(root))

    @pytest.mark.parametrize("scheme", INSTALLABLE)
    def test_reboot_required_only_for_legacy(self, root, system, scheme):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        result = apply_configuration(scheme, desired, system, root)

        assert result.reboot_required == (scheme == ConfigurationScheme.LEGACY)

    def test_systemd_command_sequence(self, root, system):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        apply_configuration(ConfigurationScheme.ESOTERICAL, desired, system, root)

        assert system.commands() == [
            "apt-get update",
            "apt-get install can-utils systemd",
            "systemctl enable systemd-networkd",
            "systemctl unmask systemd-networkd",
            "systemctl disable systemd-networkd-wait-online.service",
            "systemctl start systemd-networkd",
            "systemctl restart systemd-networkd",
        ]

    def test_legacy_does_not_touch_networkd(self, root, system):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        apply_configuration(ConfigurationScheme.LEGACY, desired, system, root)

        assert system.commands() == [
            "apt-get update",
            "apt-get install can-utils ifupdown net-tools",
        ]

    def test_skip_dependencies(self, root, system):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        apply_configuration(ConfigurationScheme.GEMINI, desired, system, root, install_deps=False)

        assert not system.ran("apt-get")
        assert system.ran("systemctl", "restart", "systemd-networkd")

    def test_idempotent(self, root, system):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        apply_configuration(ConfigurationScheme.GEMINI, desired, system, root)
        first = {p: p.read_text() for p in GEMINI.resolve(root)}

        result = apply_configuration(ConfigurationScheme.GEMINI, desired, system, root)

        assert {p: p.read_text() for p in GEMINI.resolve(root)} == first
        assert result.removed == []
        assert detect(root) == ConfigurationScheme.GEMINI

    def test_overwrites_previous_values(self, root, system):
        apply_configuration(
            ConfigurationScheme.ESOTERICAL,
            DesiredParameters(bitrate=125000, tx_queue_length=1024),
            system, root,
        )
        result = apply_configuration(
            ConfigurationScheme.ESOTERICAL,
            DesiredParameters(bitrate=1000000, tx_queue_length=128),
            system, root,
        )

        assert result.persisted.bitrate == "1000000"
        assert result.persisted.tx_queue_length == "128"

    def test_removes_other_schemes(self, root, system, install_scheme):
        legacy_files = install_scheme(ConfigurationScheme.LEGACY)
        gemini_files = install_scheme(ConfigurationScheme.GEMINI)
        assert detect(root) == ConfigurationScheme.MULTIPLE

        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        result = apply_configuration(ConfigurationScheme.ESOTERICAL, desired, system, root)

        assert sorted(result.removed) == sorted(legacy_files + gemini_files)
        assert not any(p.exists() for p in legacy_files + gemini_files)
        assert detect(root) == ConfigurationScheme.ESOTERICAL

    def test_repairs_broken_configuration(self, root, system, touch):
        touch(GEMINI.paths[0])
        assert detect(root) == ConfigurationScheme.GEMINI_BROKEN

        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)
        apply_configuration(ConfigurationScheme.GEMINI, desired, system, root)

        assert detect(root) == ConfigurationScheme.GEMINI

    def test_package_failure_writes_nothing(self, root, install_scheme):
        """A failed apt step aborts before any file is touched."""
        legacy_files = install_scheme(ConfigurationScheme.LEGACY)
        system = FakeSystem(failing={"apt-get install"})
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)

        with pytest.raises(CommandError) as exc_info:
            apply_configuration(ConfigurationScheme.ESOTERICAL, desired, system, root)

        assert exc_info.value.returncode == 1
        assert exc_info.value.command[:2] == ["apt-get", "install"]
        assert all(p.exists() for p in legacy_files)
        assert detect(root) == ConfigurationScheme.LEGACY

    def test_networkd_prepare_failure(self, root):
        system = FakeSystem(failing={"systemctl unmask"})
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)

        with pytest.raises(CommandError):
            apply_configuration(ConfigurationScheme.GEMINI, desired, system, root)

        assert not system.ran("systemctl", "start")
        assert detect(root) == ConfigurationScheme.UNKNOWN

    def test_restart_failure_skips_validation(self, root):
        system = FakeSystem(failing={"systemctl restart"})
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)

        with patch("cantastic.configure.extract_parameters") as mock_extract:
            with pytest.raises(CommandError) as exc_info:
                apply_configuration(ConfigurationScheme.ESOTERICAL, desired, system, root)

        mock_extract.assert_not_called()
        assert "systemd-networkd" in str(exc_info.value)

    def test_validation_mismatch_leaves_files(self, root, system, monkeypatch):
        """A mismatch is reported with both values and nothing is rolled back."""
        wrong = dataclasses.replace(
            ESOTERICAL,
            bitrate_template="[Match]\nName=can*\n\n[CAN]\nBitRate=500000\n",
        )
        monkeypatch.setitem(SCHEMES, ConfigurationScheme.ESOTERICAL, wrong)
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)

        with pytest.raises(ValidationError) as exc_info:
            apply_configuration(ConfigurationScheme.ESOTERICAL, desired, system, root)

        error = exc_info.value
        assert error.scheme_name == "Esoterical"
        assert error.mismatches == {"bitrate": ("1000000", "500000")}
        assert "bitrate expected 1000000 found 500000" in str(error)

        network = resolve_path(root, ESOTERICAL.bitrate_file)
        assert str(network) in error.files
        assert "BitRate=500000" in network.read_text()
        assert detect(root) == ConfigurationScheme.ESOTERICAL

    def test_validation_missing_value(self, root, system, monkeypatch):
        wrong = dataclasses.replace(GEMINI, queue_template="[Service]\nType=oneshot\n")
        monkeypatch.setitem(SCHEMES, ConfigurationScheme.GEMINI, wrong)
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=256)

        with pytest.raises(ValidationError) as exc_info:
            apply_configuration(ConfigurationScheme.GEMINI, desired, system, root)

        assert exc_info.value.mismatches == {"txqueuelen": ("256", None)}
        assert "found nothing" in str(exc_info.value)

    @pytest.mark.parametrize("scheme", [
        ConfigurationScheme.UNKNOWN,
        ConfigurationScheme.MULTIPLE,
        ConfigurationScheme.ESOTERICAL_BROKEN,
    ])
    def test_not_installable(self, root, system, scheme):
        desired = DesiredParameters(bitrate=1000000, tx_queue_length=128)

        with pytest.raises(KeyError):
            apply_configuration(scheme, desired, system, root)

        assert system.calls == []


class TestDeleteConfiguration:
    """Tests for deleting configuration files."""

    def test_delete_everything(self, root, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)
        install_scheme(ConfigurationScheme.ESOTERICAL)

        removed = delete_configuration(root)

        assert len(removed) == 3
        assert detect(root) == ConfigurationScheme.UNKNOWN

    def test_delete_nothing(self, root):
        assert delete_configuration(root) == []

    def test_remove_keeps_requested_scheme(self, root, install_scheme):
        gemini_files = install_scheme(ConfigurationScheme.GEMINI)
        install_scheme(ConfigurationScheme.LEGACY)

        removed = remove_scheme_files(root, keep=ConfigurationScheme.GEMINI)

        assert removed == LEGACY.resolve(root)
        assert all(p.exists() for p in gemini_files)


class TestRestartCanbus:
    """Tests for restart_canbus()."""

    def test_legacy_cycles_interface(self, root, system, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)

        result = restart_canbus(system, root, settle_delay=0)

        assert result.scheme == ConfigurationScheme.LEGACY
        assert result.warnings == []
        assert system.commands() == ["ifdown can0", "ifup can0"]

    def test_legacy_waits_between_down_and_up(self, root, system, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)

        with patch("cantastic.configure.time.sleep") as mock_sleep:
            restart_canbus(system, root, settle_delay=3.0)

        mock_sleep.assert_called_once_with(3.0)

    def test_legacy_blocked(self, root, system, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)

        with pytest.raises(PreconditionError):
            restart_canbus(system, root, legacy_blocked=True, settle_delay=0)

        assert system.calls == []

    def test_legacy_ifdown_failure_is_ignored(self, root, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)
        system = FakeSystem(failing={"ifdown"})

        restart_canbus(system, root, settle_delay=0)

        assert system.ran("ifup", "can0")

    def test_legacy_ifup_failure(self, root, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)
        system = FakeSystem(failing={"ifup"})

        with pytest.raises(CommandError):
            restart_canbus(system, root, settle_delay=0)

    @pytest.mark.parametrize("scheme", [ConfigurationScheme.ESOTERICAL, ConfigurationScheme.GEMINI])
    def test_systemd_restarts_networkd(self, root, system, install_scheme, scheme):
        install_scheme(scheme)

        result = restart_canbus(system, root, legacy_blocked=True)

        assert result.warnings == []
        assert system.commands() == ["systemctl restart systemd-networkd"]

    def test_multiple_restarts_both_with_warning(self, root, system, install_scheme):
        install_scheme(ConfigurationScheme.LEGACY)
        install_scheme(ConfigurationScheme.GEMINI)

        result = restart_canbus(system, root, settle_delay=0)

        assert result.scheme == ConfigurationScheme.MULTIPLE
        assert len(result.warnings) == 1
        assert system.commands() == [
            "ifdown can0",
            "ifup can0",
            "systemctl restart systemd-networkd",
        ]

    def test_multiple_warning_logged_when_ifup_fails(self, root, install_scheme, caplog):
        install_scheme(ConfigurationScheme.LEGACY)
        install_scheme(ConfigurationScheme.GEMINI)
        system = FakeSystem(failing={"ifup"})

        with caplog.at_level(logging.WARNING, logger="cantastic.configure"):
            with pytest.raises(CommandError):
                restart_canbus(system, root, settle_delay=0)

        assert "Multiple methods detected" in caplog.text
        assert not system.ran("systemctl")

    def test_broken_restarts_with_warning(self, root, system, touch):
        touch(ESOTERICAL.paths[1])

        result = restart_canbus(system, root)

        assert result.scheme == ConfigurationScheme.ESOTERICAL_BROKEN
        assert "broken" in result.warnings[0]
        assert system.commands() == ["systemctl restart systemd-networkd"]

    def test_networkd_failure(self, root, install_scheme):
        install_scheme(ConfigurationScheme.GEMINI)
        system = FakeSystem(failing={"systemctl restart"})

        with pytest.raises(CommandError):
            restart_canbus(system, root)

    def test_unknown_with_adapter(self, root):
        system = FakeSystem(link=LINK_UP)

        with pytest.raises(PreconditionError, match="not supported"):
            restart_canbus(system, root)

        assert not system.ran("systemctl")

    def test_unknown_without_adapter(self, root, system):
        with pytest.raises(PreconditionError, match="not detected"):
            restart_canbus(system, root)
