import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import make_case
from repairdesk.core import ConfigurationException
from repairdesk.sla.infrastructure import SLAConfigManager, SLAScheduler

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "sla_config.yaml"

CATALOG = """
default_customer_tier: standard
default_service_type: repair
sla_configurations:
  - id: gold
    customer_tier: premium
    service_type: repair
    workflow_configuration_ids: [express-flow]
    response_time_hours: 1
    resolution_time_hours: 4
  - id: basic
    customer_tier: standard
    service_type: repair
    response_time_hours: 8
    resolution_time_hours: 48
  - id: retired
    customer_tier: business
    service_type: repair
    response_time_hours: 2
    resolution_time_hours: 6
    is_active: false
"""


def write_catalog(tmp_path: Path, content: str = CATALOG) -> Path:
    path = tmp_path / "sla_config.yaml"
    path.write_text(content)
    return path


def test_resolution_order(tmp_path):
    manager = SLAConfigManager()
    manager.load(write_catalog(tmp_path))

    linked = make_case(customer_tier="standard", workflow_configuration_id="express-flow")
    by_tier = make_case(customer_tier="premium")
    fallback = make_case(customer_tier="unknown-tier")
    inactive = make_case(customer_tier="business")

    assert manager.resolve(linked).id == "gold"
    assert manager.resolve(by_tier).id == "gold"
    assert manager.resolve(fallback).id == "basic"
    assert manager.resolve(inactive).id == "basic"


def test_missing_file_gives_empty_catalog(tmp_path):
    manager = SLAConfigManager()
    catalog = manager.load(tmp_path / "absent.yaml")

    assert catalog.sla_configurations == []
    assert manager.resolve(make_case()) is None


@pytest.mark.parametrize("content", [
    "sla_configurations: [unclosed",
    "sla_configurations:\n  - id: x\n    response_time_hours: -1\n    resolution_time_hours: 2\n",
    "sla_configurations:\n  - {id: a, response_time_hours: 1, resolution_time_hours: 2}\n"
    "  - {id: a, response_time_hours: 1, resolution_time_hours: 2}\n",
])
def test_invalid_file_is_rejected(tmp_path, content):
    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(write_catalog(tmp_path, content))


def test_reload_keeps_previous_catalog_on_error(tmp_path):
    path = write_catalog(tmp_path)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text("sla_configurations: [broken")

    assert manager.reload() is False
    assert manager.resolve(make_case()).id == "basic"


def test_reload_picks_up_changes(tmp_path):
    path = write_catalog(tmp_path)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text(CATALOG.replace("resolution_time_hours: 48", "resolution_time_hours: 36"))

    assert manager.reload() is True
    assert manager.resolve(make_case()).resolution_time_hours == 36


def test_reload_before_load():
    assert SLAConfigManager().reload() is False


def test_catalog_before_load():
    with pytest.raises(RuntimeError):
        SLAConfigManager().catalog


def test_shipped_catalog_is_valid():
    manager = SLAConfigManager()
    catalog = manager.load(SHIPPED_CONFIG)

    assert {c.id for c in catalog.sla_configurations} == {
        "premium-repair", "business-repair", "standard-repair"
    }
    premium = manager.resolve(make_case(customer_tier="premium"))
    assert [r.level for r in premium.escalation_rules] == [1, 2, 3]
    assert manager.resolve(make_case(workflow_configuration_id="premium-repair-flow")).id == "premium-repair"


# ========== Scheduler ==========

def test_scheduler_registers_one_sweep_job():
    async def job():
        pass

    async def scenario():
        scheduler = SLAScheduler(interval_minutes=5)
        await scheduler.start(job)
        await scheduler.start(job)
        jobs = scheduler._scheduler.get_jobs()
        running = scheduler.is_running
        await scheduler.stop()
        return jobs, running, scheduler.is_running

    jobs, running, after_stop = asyncio.run(scenario())

    assert [j.id for j in jobs] == ["sla_sweep"]
    assert jobs[0].max_instances == 1
    assert jobs[0].trigger.interval == timedelta(minutes=5)
    assert (running, after_stop) == (True, False)
