"""
Custom Role Validator — Main Orchestrator

Usage:
    python -m custom_role_validator --role-name "NetOps Operator"          # default profile
    python -m custom_role_validator --profile netops-prod                  # named profile
    python -m custom_role_validator --config config.json                   # JSON config file
    python -m custom_role_validator --delegated --tenant-id ... --role-name ...
    python -m custom_role_validator --role-name X --modules networking --categories peering routing

Catalog and teardown:
    python -m custom_role_validator list-tests [--modules authorization]
    python -m custom_role_validator --profile netops-prod cleanup --state-file ./run/environment_state.json

Profile management:
    python -m custom_role_validator profile add <name> --tenant-id ... --client-id ... --role-name ...
    python -m custom_role_validator profile list
    python -m custom_role_validator profile remove <name>
    python -m custom_role_validator profile set-default <name>

Every write is confined to a throwaway resource group (plus the suite's own
app registration) and everything provisioned is deleted at the end of the run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

from . import __version__
from .config import (
    ALL_FORMATS,
    ARM_API_VERSIONS,
    ARM_SCOPE,
    AZURE_CLI_CLIENT_ID,
    GRAPH_SCOPE,
    REQUIRED_PERMISSIONS,
    REQUIREMENT_CATEGORIES,
    AuthConfig,
    CertificateAuth,
    ClientSecretAuth,
    DelegatedAuth,
    SuiteConfig,
)
from .safety.guardian import ScopeGuardian
from .auth.authenticator import AuthenticationError, Authenticator
from .arm.client import ApiError, ArmClient
from .graph.client import GraphClient
from .environment import (
    ConfigurationError,
    EnvironmentCleanup,
    EnvironmentInitializer,
    EnvironmentSetupError,
    SuiteContext,
    load_state,
    resolve_custom_role,
    resolve_subscription,
    save_state,
    validate_region,
)
from .environment.retry import looks_like_principal_delay, retry_fixed
from .checks import ALL_TEST_MODULES, BaseTestModule, NetworkingTests, case_summary
from .checks.base import TestResult, is_denial
from .summary import SuiteSummary, compute_summary
from .summary.models import EXIT_OK, EXIT_SETUP_FAILURE, EXIT_TEST_FAILURES
from .reporting import export_csv, export_html, export_json, export_junit, export_text
from .profiles import ProfileStore, SubscriptionProfile, resolve_profile

logger = logging.getLogger("custom_role_validator")

MODULE_NAMES = [cls.name for cls in ALL_TEST_MODULES]


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m custom_role_validator profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --role-name <ROLE>")
        return 0

    print(f"\n  {'Name':<20s} {'Subscription ID':<38s} {'Role':<30s} {'Auth':<12s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*30} {'─'*12} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        print(
            f"  {p.name:<20s} {p.subscription_id or '(auto)':<38s} "
            f"{p.role_name:<30s} {p.auth_mode:<12s}{default_marker}"
        )
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = SubscriptionProfile(
        name=name,
        tenant_id=args.tenant_id,
        subscription_id=args.subscription_id or "",
        client_id=args.client_id or "",
        cert_path=args.cert_path or "./base64.txt",
        role_name=args.role_name or "",
        region=args.region or "",
        prefix=args.prefix or "",
        auth_mode=args.auth_mode,
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


# ---------------------------------------------------------------------------
# list-tests
# ---------------------------------------------------------------------------

def _catalog_context() -> SuiteContext:
    """Placeholder context so catalogs can be listed without touching Azure."""
    return SuiteContext(
        run_id="catalog",
        subscription_id="00000000-0000-0000-0000-000000000000",
        tenant_id="",
        region="eastus",
        prefix="rbactest",
    )


def _cmd_list_tests(args: argparse.Namespace) -> int:
    selected = args.modules or MODULE_NAMES
    context = _catalog_context()
    total = 0
    for cls in ALL_TEST_MODULES:
        if cls.name not in selected:
            continue
        module = cls(None, context)
        cases = module.build_cases()
        total += len(cases)
        print(f"\n  {cls.name.upper()} — {cls.description} ({len(cases)} cases)")
        print(f"  {'─'*9} {'─'*28} {'─'*6} {'─'*60}")
        for case in cases:
            row = case_summary(case)
            print(f"  {row['id']:<9s} {row['category']:<28s} {row['expect']:<6s} {row['action']}")
            print(f"  {'':<9s} {row['name']}")
    print(f"\n  {total} cases\n")
    return 0


# ---------------------------------------------------------------------------
# permissions
# ---------------------------------------------------------------------------

def _cmd_permissions() -> int:
    print("\n  The administrator identity needs:\n")
    for permission, purpose in REQUIRED_PERMISSIONS.items():
        print(f"  • {permission}")
        print(f"      {purpose}")
    print()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="custom_role_validator",
        description="Custom Role Validator — proves an Azure custom role denies what it must",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Management commands")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage subscription profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a subscription profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'netops-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--subscription-id", help="Subscription ID (default: the single enabled subscription)")
    add_p.add_argument("--client-id", help="Administrator app registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--role-name", help="Custom role under test")
    add_p.add_argument("--region", help="Azure region for the test environment")
    add_p.add_argument("--prefix", help="Resource name prefix")
    add_p.add_argument(
        "--auth-mode", choices=["certificate", "secret", "delegated"], default="certificate",
        help="Administrator authentication mode (default: certificate)",
    )
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- list-tests ---
    lt_p = subparsers.add_parser("list-tests", help="Print the test catalog without touching Azure")
    lt_p.add_argument("--modules", nargs="+", choices=MODULE_NAMES, help="Modules to list")

    subparsers.add_parser("permissions", help="Show what the administrator identity must be granted")

    # --- cleanup ---
    cl_p = subparsers.add_parser("cleanup", help="Tear down an environment kept by an earlier run")
    cl_p.add_argument("--state-file", type=Path, required=True, help="environment_state.json from the run")

    # --- Run options ---
    parser.add_argument("--profile", "-p", type=str, default=None,
                        help="Profile name to use (run 'profile list' to see available)")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--subscription-id", type=str, default=None,
                        help="Subscription ID (default: the single enabled subscription)")
    parser.add_argument("--tenant-id", type=str, default=None, help="Tenant ID (overrides profile)")
    parser.add_argument("--region", type=str, default=None, help="Azure region (default: eastus)")
    parser.add_argument("--role-name", type=str, default=None, help="Custom role under test")
    parser.add_argument("--prefix", type=str, default=None, help="Resource name prefix (default: rbactest)")
    parser.add_argument("--client-id", type=str, default=None,
                        help="Administrator client ID (overrides profile)")
    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file")
    parser.add_argument("--delegated", action="store_true",
                        help="Use delegated (device-code) authentication instead of certificate")
    parser.add_argument("--modules", nargs="+", choices=MODULE_NAMES, default=None,
                        help="Test modules to run (default: all)")
    parser.add_argument("--categories", nargs="+", choices=list(REQUIREMENT_CATEGORIES), default=None,
                        help="Requirement categories to run; others are reported SKIPPED")
    parser.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Output directory (default: ./rbac_validation_<timestamp>)")
    parser.add_argument("--formats", nargs="+", choices=ALL_FORMATS, default=None,
                        help="Output formats to generate")
    parser.add_argument("--keep-environment", action="store_true",
                        help="Leave the test environment in place (tear down later with 'cleanup')")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SuiteConfig:
    """Build configuration. Precedence: CLI flag > profile > config file > defaults."""
    if args.config:
        if not args.config.exists():
            raise ConfigurationError(f"Config file not found: {args.config}")
        config = SuiteConfig.from_file(str(args.config))
    else:
        config = SuiteConfig()

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigurationError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    env = config.environment
    if profile:
        env.tenant_id = profile.tenant_id
        env.subscription_id = profile.subscription_id or env.subscription_id
        env.role_name = profile.role_name or env.role_name
        env.region = profile.region or env.region
        env.prefix = profile.prefix or env.prefix
        config.auth.mode = profile.auth_mode or config.auth.mode

    for attr in ("subscription_id", "tenant_id", "region", "role_name", "prefix"):
        value = getattr(args, attr, None)
        if value:
            setattr(env, attr, value)
    if args.keep_environment:
        env.keep_environment = True
    if args.delegated:
        config.auth.mode = "delegated"

    _build_auth(config, args, profile)

    if args.modules:
        config.modules = list(args.modules)
    if args.categories:
        config.categories = list(args.categories)
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.formats:
        config.output.formats = list(args.formats)
    config.verbose = args.verbose or config.verbose
    return config


def _build_auth(config: SuiteConfig, args: argparse.Namespace, profile: Optional[SubscriptionProfile]):
    auth = config.auth
    tenant_id = config.tenant_id
    profile_client = profile.client_id if profile else ""

    if auth.mode == "delegated":
        existing = auth.delegated
        auth.delegated = DelegatedAuth(
            tenant_id=tenant_id,
            client_id=args.client_id or (existing.client_id if existing else AZURE_CLI_CLIENT_ID),
        )
    elif auth.mode == "secret":
        existing = auth.secret
        client_id = args.client_id or profile_client or (existing.client_id if existing else "")
        if not client_id:
            raise ConfigurationError("Client-secret auth needs --client-id (or a profile/config value)")
        auth.secret = ClientSecretAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=existing.client_secret if existing else "",
        )
    elif auth.mode == "certificate":
        existing = auth.certificate
        client_id = args.client_id or profile_client or (existing.client_id if existing else "")
        if args.cert_path:
            cert_path = str(args.cert_path)
        elif profile:
            cert_path = profile.resolve_cert_path()
        elif existing:
            cert_path = existing.certificate_path
        else:
            cert_path = "./base64.txt"
        if not client_id:
            raise ConfigurationError(
                "No administrator credentials found. Use --profile <name>, "
                "--tenant-id X --client-id Y, --config config.json, or --delegated"
            )
        auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=existing.certificate_password if existing else "",
        )
    else:
        raise ConfigurationError(f"Unknown auth mode: {auth.mode}")

    if not tenant_id:
        raise ConfigurationError("No tenant ID. Use --tenant-id, a profile, or a config file")


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    if not verbose:
        # Keep transport chatter out of the console
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("msal").setLevel(logging.WARNING)


def _phase(title: str):
    print("\n" + "=" * 70)
    print(f" {title}")
    print("=" * 70)


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

async def resolve_run(arm: ArmClient, config: SuiteConfig, run_id: str) -> SuiteContext:
    """Phase 1: subscription, region and role under test."""
    env = config.environment
    if not env.role_name:
        raise ConfigurationError("No custom role given. Use --role-name or set it in the profile/config")

    subscription = await resolve_subscription(arm, env.subscription_id)
    subscription_id = subscription["subscriptionId"]
    region = await validate_region(arm, subscription_id, env.region)
    role = await resolve_custom_role(arm, subscription_id, env.role_name)

    print(f"  ✅ Subscription: {subscription.get('displayName', '')} ({subscription_id})")
    print(f"  ✅ Region:       {region}")
    print(f"  ✅ Role:         {env.role_name} ({role['id']})")

    return SuiteContext(
        run_id=run_id,
        subscription_id=subscription_id,
        tenant_id=config.tenant_id or subscription.get("tenantId", ""),
        region=region,
        prefix=env.prefix,
        role_name=env.role_name,
        role_definition_id=role["id"],
        role_definition=role,
    )


async def switch_auth_context(context: SuiteContext, config: SuiteConfig) -> str:
    """Phase 3: ARM token as the test service principal."""
    sp_auth = Authenticator(AuthConfig(
        mode="secret",
        secret=ClientSecretAuth(
            tenant_id=context.tenant_id,
            client_id=context.service_principal["app_id"],
            client_secret=context.client_secret,
        ),
    ))
    return await retry_fixed(
        lambda: sp_auth.acquire_token(ARM_SCOPE),
        attempts=config.retry.principal_attempts,
        delay=config.retry.principal_delay_seconds,
        should_retry=looks_like_principal_delay,
        label="test principal sign-in",
    )


async def wait_for_propagation(arm: ArmClient, context: SuiteContext, config: SuiteConfig) -> bool:
    """Probe the resource group as the test principal until the role assignment is visible."""
    try:
        await retry_fixed(
            lambda: arm.get(context.resource_group_id, ARM_API_VERSIONS["resource_groups"]),
            attempts=config.retry.propagation_attempts,
            delay=config.retry.propagation_delay_seconds,
            should_retry=is_denial,
            label="role assignment propagation",
        )
    except ApiError as e:
        logger.warning(f"Role assignment propagation not confirmed: {e}")
        return False
    return True


def build_modules(arm: ArmClient, context: SuiteContext, config: SuiteConfig) -> list[BaseTestModule]:
    modules: list[BaseTestModule] = []
    for cls in ALL_TEST_MODULES:
        if cls.name not in config.modules:
            continue
        if cls is NetworkingTests:
            modules.append(cls(arm, context, config.categories, environment=config.environment))
        else:
            modules.append(cls(arm, context, config.categories))
    return modules


async def run_test_phases(arm: ArmClient, context: SuiteContext, config: SuiteConfig) -> list[TestResult]:
    """Phase 4: each module in catalog order, cases strictly one at a time."""
    results: list[TestResult] = []
    for module in build_modules(arm, context, config):
        print(f"\n  ▶ {module.name.title()} — {module.description}")
        module_results = await module.execute()
        for r in module_results:
            icon = {"PASS": "✅", "FAIL": "❌", "ERROR": "⚠ ", "SKIPPED": "⏭ "}.get(r.status, "  ")
            print(f"    {icon} {r.test_id:<9s} {r.status:<8s} {r.name}")
        results.extend(module_results)
    return results


def generate_reports(
    summary: SuiteSummary,
    results: list[TestResult],
    context: SuiteContext,
    output_dir: Path,
    run_id: str,
    formats: list[str],
    audit: dict,
    setup: dict,
) -> list[Path]:
    """Phase 5: all requested report formats."""
    created = []

    if "json" in formats:
        path = export_json(summary, results, context, output_dir, run_id, audit=audit, setup=setup)
        created.append(path)
        print(f"  📄 JSON:   {path}")

    if "csv" in formats:
        paths = export_csv(summary, results, output_dir, run_id)
        created.extend(paths)
        for p in paths:
            print(f"  📊 CSV:    {p}")

    if "html" in formats:
        path = export_html(summary, results, context, output_dir, run_id)
        created.append(path)
        print(f"  🌐 HTML:   {path}")

    if "text" in formats:
        path = export_text(summary, results, context, output_dir, run_id)
        created.append(path)
        print(f"  📝 Text:   {path}")

    if "junit" in formats:
        path = export_junit(results, output_dir, run_id)
        created.append(path)
        print(f"  🧪 JUnit:  {path}")

    return created


async def run_cleanup(arm: ArmClient, graph: GraphClient, context: SuiteContext, config: SuiteConfig) -> bool:
    """Phase 6: teardown. Returns True when every step succeeded."""
    report = await EnvironmentCleanup(arm, graph, context, config.retry).run()
    for step in report.steps:
        icon = {"failed": "❌", "unknown": "⚠ "}.get(step["status"], "✅")
        print(f"  {icon} {step['step']}: {step['status']}")
    if report.failed:
        print(f"\n  ⚠  {len(report.failed)} cleanup step(s) failed; remaining resources:")
        for step in report.failed:
            print(f"      {step['target']}")
    return report.ok


async def _admin_clients(config: SuiteConfig, guardian: ScopeGuardian) -> tuple[ArmClient, GraphClient]:
    authenticator = Authenticator(config.auth)
    arm_token = await authenticator.acquire_token(ARM_SCOPE)
    graph_token = await authenticator.acquire_token(GRAPH_SCOPE)
    return (
        ArmClient(access_token=arm_token, guardian=guardian, retry=config.retry),
        GraphClient(access_token=graph_token, guardian=guardian, retry=config.retry),
    )


async def run_suite(config: SuiteConfig) -> int:
    """Resolve → setup → auth context switch → tests → export → cleanup."""
    run_id = config.output.timestamp + "_" + uuid.uuid4().hex[:8]
    output_dir = config.output.run_dir
    env = config.environment

    guardian = ScopeGuardian(env.subscription_id, env.resource_group, env.prefix)
    guardian.print_banner()

    print("=" * 70)
    print(f" Custom Role Validator v{__version__}")
    print("=" * 70)
    print(f"\n📋 Run ID: {run_id}")
    print(f"📂 Output: {output_dir.resolve()}")

    _phase("PHASE 1: RESOLVE")
    try:
        arm, graph = await _admin_clients(config, guardian)
    except AuthenticationError as e:
        print(f"\n❌ Authentication failed: {e}")
        return EXIT_SETUP_FAILURE

    async with arm, graph:
        try:
            context = await resolve_run(arm, config, run_id)
        except (ConfigurationError, ApiError) as e:
            print(f"\n❌ {e}")
            return EXIT_SETUP_FAILURE
        guardian.subscription_id = context.subscription_id

        exit_code = EXIT_SETUP_FAILURE
        try:
            _phase("PHASE 2: ENVIRONMENT SETUP")
            initializer = EnvironmentInitializer(arm, graph, context, env, config.retry)
            try:
                setup = await initializer.initialize()
            except EnvironmentSetupError as e:
                print(f"\n❌ Environment setup failed: {e}")
                return EXIT_SETUP_FAILURE
            state_file = save_state(context, config.output.state_file)
            print(f"  ✅ {len(setup.metadata['created'])} created, {len(setup.metadata['reused'])} reused "
                  f"({setup.metadata['duration_seconds']}s)")
            print(f"  📄 State:  {state_file}")

            _phase("PHASE 3: AUTH CONTEXT SWITCH")
            try:
                sp_token = await switch_auth_context(context, config)
            except AuthenticationError as e:
                print(f"\n❌ Could not sign in as the test principal: {e}")
                return EXIT_SETUP_FAILURE
            print(f"  ✅ Signed in as {context.service_principal['display_name']}")

            async with ArmClient(access_token=sp_token, guardian=guardian, retry=config.retry) as sp_arm:
                context.propagation_confirmed = await wait_for_propagation(sp_arm, context, config)
                if context.propagation_confirmed:
                    print("  ✅ Role assignment visible to the test principal")
                else:
                    print("  ⚠  Role assignment propagation not confirmed; continuing")

                _phase("PHASE 4: ROLE VALIDATION TESTS")
                results = await run_test_phases(sp_arm, context, config)

            _phase("PHASE 5: EXPORT")
            summary = compute_summary(results)
            generate_reports(
                summary=summary,
                results=results,
                context=context,
                output_dir=output_dir,
                run_id=run_id,
                formats=config.output.formats,
                audit=guardian.get_audit_record(),
                setup=setup.metadata,
            )
            print(f"\n  Verdict:   {summary.verdict}")
            print(f"  Pass rate: {summary.pass_rate:.1f}% ({summary.passed}/{summary.executed} executed)")
            print(f"  FAIL: {summary.failed}  ERROR: {summary.errors}  SKIPPED: {summary.skipped}")
            exit_code = summary.exit_code

        finally:
            save_state(context, config.output.state_file)
            if env.keep_environment:
                print(f"\n  ⏸  Environment kept. Tear down with: cleanup --state-file {config.output.state_file}")
            else:
                _phase("PHASE 6: CLEANUP")
                if not await run_cleanup(arm, graph, context, config):
                    print(f"  Retry later with: cleanup --state-file {config.output.state_file}")

    _phase("RUN COMPLETE")
    print(f"\n  Path: {output_dir.resolve()}\n")
    return exit_code


async def cleanup_from_state(config: SuiteConfig, state_file: Path) -> int:
    """`cleanup` sub-command."""
    if not state_file.exists():
        print(f"❌ State file not found: {state_file}")
        return EXIT_SETUP_FAILURE
    try:
        context = load_state(state_file)
    except (ValueError, KeyError, TypeError) as e:
        print(f"❌ Unreadable state file {state_file}: {e}")
        return EXIT_SETUP_FAILURE
    guardian = ScopeGuardian(context.subscription_id, context.resource_group, context.prefix)
    guardian.print_banner()

    try:
        arm, graph = await _admin_clients(config, guardian)
    except AuthenticationError as e:
        print(f"\n❌ Authentication failed: {e}")
        return EXIT_SETUP_FAILURE

    _phase("CLEANUP")
    async with arm, graph:
        ok = await run_cleanup(arm, graph, context, config)
    return EXIT_OK if ok else EXIT_TEST_FAILURES


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point."""
    args = parse_args(argv)

    command = getattr(args, "command", None)
    if command == "profile":
        if not getattr(args, "profile_action", None):
            print("Usage: python -m custom_role_validator profile {add|list|remove|set-default}")
            return EXIT_OK
        return _cmd_profile(args)
    if command == "list-tests":
        return _cmd_list_tests(args)
    if command == "permissions":
        return _cmd_permissions()

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"\n❌ {e}")
        return EXIT_SETUP_FAILURE
    configure_logging(config.verbose)

    if command == "cleanup":
        return await cleanup_from_state(config, args.state_file)
    return await run_suite(config)


def main():
    """Synchronous entry point for `python -m custom_role_validator`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
