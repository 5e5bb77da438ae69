# updateflow_workflow.py
# Nightly package updates for a Windows dev box: refresh sources, upgrade, report.
from __future__ import annotations

from updateflow import build, step, wf


def collect_report():
    return {"report": "written by --summary-out"}


def workflow():
    return wf(
        # Package sources: cached so repeated runs within the hour skip the network
        step("winget-source", "winget source update", timeout=300, retries=2,
             retry_backoff=5, cache_key="winget:source", cache_ttl=3600, section="sources"),
        step("choco-outdated", "choco outdated -r", timeout=300,
             cache_key="choco:outdated", cache_ttl=3600, section="sources"),

        # Upgrades: independent managers run side by side
        build("winget")
            .depends_on("winget-source")
            .run("winget upgrade --all --silent --accept-package-agreements")
            .with_timeout(3600)
            .in_section("upgrades")
            .requiring_success()
            .build(),
        build("choco")
            .depends_on("choco-outdated")
            .run("choco upgrade all -y")
            .with_timeout(3600)
            .in_section("upgrades")
            .build(),
        step("pip", ["python", "-m", "pip", "list", "--outdated", "--format", "json"],
             timeout=120, section="upgrades"),
        step("npm", "npm update -g", timeout=900, retries=1, section="upgrades"),

        step("report", collect_report, needs=["winget", "choco", "pip", "npm"]),
    )
