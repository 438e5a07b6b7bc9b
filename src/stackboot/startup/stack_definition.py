"""Default service graph for a self-hosted Supabase stack."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stackboot.startup.health_checks import (
    CaveatRule,
    ExecCheckProbe,
    HttpEndpointProbe,
    RuntimeStateProbe,
)
from stackboot.startup.service_registry import ServiceNode, ServiceRegistry

if TYPE_CHECKING:
    from stackboot.startup.config_schema import StackConfig

# Services that must be healthy before the store can be bootstrapped.
BOOTSTRAP_REQUIRES = ("db",)

# The realtime image's own healthcheck calls an endpoint that answers 403 when
# self-hosted, so the container reports unhealthy while working.
REALTIME_CAVEAT = CaveatRule(
    accept_runtime_unhealthy=True,
    note="container healthcheck fails when self-hosted",
)


def default_stack(config: StackConfig) -> ServiceRegistry:
    """Build the registry, declared in the order services should appear in waves."""
    runtime = RuntimeStateProbe()
    analytics_deps = ("analytics",)
    return ServiceRegistry.from_nodes(
        [
            ServiceNode("vector", "supabase-vector", probe=runtime),
            ServiceNode(
                "db",
                "supabase-db",
                depends_on=("vector",),
                probe=ExecCheckProbe(
                    ("pg_isready", "-U", config.postgres_user, "-h", "localhost")
                ),
                description="PostgreSQL",
            ),
            ServiceNode(
                "analytics",
                "supabase-analytics",
                depends_on=("db",),
                probe=runtime,
                timeout=120.0,
                description="Logflare",
            ),
            ServiceNode("auth", "supabase-auth", analytics_deps, runtime),
            ServiceNode("rest", "supabase-rest", analytics_deps, runtime),
            ServiceNode(
                "realtime",
                "realtime-dev.supabase-realtime",
                analytics_deps,
                runtime,
                caveat=REALTIME_CAVEAT,
            ),
            ServiceNode("meta", "supabase-meta", analytics_deps, runtime),
            ServiceNode("imgproxy", "supabase-imgproxy", analytics_deps, runtime),
            ServiceNode(
                "functions",
                "supabase-edge-functions",
                analytics_deps,
                runtime,
                mandatory=False,
                description="Edge runtime; first start downloads dependencies",
            ),
            ServiceNode("storage", "supabase-storage", ("rest", "imgproxy"), runtime),
            ServiceNode(
                "supavisor", "supabase-pooler", ("db", "analytics"), runtime
            ),
            ServiceNode(
                "kong",
                "supabase-kong",
                ("auth", "rest", "storage", "meta"),
                HttpEndpointProbe(
                    f"http://localhost:{config.kong_http_port}", expected=(401, 404)
                ),
                description="API gateway",
            ),
            ServiceNode(
                "studio",
                "supabase-studio",
                ("kong", "meta"),
                HttpEndpointProbe(
                    f"http://localhost:{config.studio_port}", expected=("2xx", "3xx")
                ),
            ),
        ]
    )
