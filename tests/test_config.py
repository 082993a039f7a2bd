"""
Tests for environment configuration and error envelopes.
"""

import logging

import pytest

from pci_engine.config import configure_logging, load_config
from pci_engine.errors import ConflictError, NotFoundError, StorageError, ValidationError


class TestLoadConfig:

    def test_defaults(self):
        config = load_config({})
        assert config.storage_backend == "memory"
        assert config.kv_table == "kv_store"
        assert config.log_level == "INFO"
        assert config.fallback_hourly_rate == 66.0
        assert config.vendor_markup == 1.3
        assert config.low_aas_threshold == 85.0
        assert config.supabase_url is None

    def test_supabase_variables(self):
        config = load_config({
            "PCI_STORAGE_BACKEND": "Supabase",
            "NEXT_PUBLIC_SUPABASE_URL": "https://test.supabase.co",
            "SUPABASE_ANON_KEY": "anon",
            "PCI_KV_TABLE": "kv_pci",
        })
        assert config.storage_backend == "supabase"
        assert config.supabase_url == "https://test.supabase.co"
        assert config.supabase_key == "anon"
        assert config.kv_table == "kv_pci"

    def test_service_role_key_preferred(self):
        config = load_config({"SUPABASE_SERVICE_ROLE_KEY": "service", "SUPABASE_ANON_KEY": "anon"})
        assert config.supabase_key == "service"

    def test_numeric_overrides(self):
        config = load_config({
            "PCI_FALLBACK_HOURLY_RATE": "75",
            "PCI_VENDOR_MARKUP": "1.5",
            "PCI_LOW_AAS_THRESHOLD": "80",
            "PCI_HIGH_COST_THRESHOLD": "5000",
        })
        assert config.fallback_hourly_rate == 75
        assert config.vendor_markup == 1.5
        assert config.low_aas_threshold == 80
        assert config.high_cost_threshold == 5000

    def test_bad_number(self):
        with pytest.raises(ValidationError) as exc:
            load_config({"PCI_VENDOR_MARKUP": "lots"})
        assert exc.value.target == "PCI_VENDOR_MARKUP"

    def test_bad_backend(self):
        with pytest.raises(ValidationError):
            load_config({"PCI_STORAGE_BACKEND": "redis"})


class TestLogging:

    def test_configure_logging_level(self):
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("WARNING")
        assert logging.getLogger().level == logging.WARNING


class TestErrors:

    @pytest.mark.parametrize("error_class,code", [
        (ValidationError, "validation_error"),
        (NotFoundError, "not_found"),
        (ConflictError, "conflict"),
        (StorageError, "storage_error"),
    ])
    def test_envelope(self, error_class, code):
        error = error_class("Something failed", target="task-1")
        assert error.to_dict() == {
            "code": code,
            "message": "Something failed",
            "target": "task-1",
            "details": None,
        }
