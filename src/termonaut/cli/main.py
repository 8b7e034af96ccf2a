"""Termonaut CLI -- avatar commands.

Thin wrapper around :class:`termonaut.avatar.AvatarManager` using click.
The user's level normally comes from the gamification store; here it is
passed with ``--level`` (default 1).
"""

from __future__ import annotations

import logging
import os

import click

from termonaut.avatar import (
    AvatarConfig,
    AvatarError,
    AvatarManager,
    AvatarRequest,
    AvatarSize,
    list_supported_styles,
    next_evolution_level,
)
from termonaut.avatar.dicebear import style_info
from termonaut.avatar.models import SIZES

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(msg: str) -> None:
    """Print an error message to stderr and exit 1."""
    click.echo(msg, err=True)
    raise SystemExit(1)


def _current_username(user: str | None) -> str:
    return user or os.getenv("USER") or os.getenv("USERNAME") or "user"


def _manager(ctx: click.Context) -> AvatarManager:
    """Build the manager once per invocation and close it with the context."""
    manager = ctx.obj.get("manager")
    if manager is None:
        try:
            manager = AvatarManager(AvatarConfig())
        except (AvatarError, ValueError) as exc:
            _error(f"Error: failed to initialize avatar manager: {exc}")
        ctx.obj["manager"] = manager
        ctx.call_on_close(manager.close)
    return manager


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _size_option(default: str | None):
    return click.option(
        "--size",
        "-s",
        "size_name",
        default=default,
        type=click.Choice(list(SIZES), case_sensitive=False),
        help="Avatar size (mini, small, medium, large).",
    )


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="termonaut")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: $TERMONAUT_LOG_LEVEL or WARNING).",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Termonaut -- gamified terminal productivity tracker."""
    level_name = (log_level or os.getenv("TERMONAUT_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING), format=_LOG_FORMAT)
    ctx.ensure_object(dict)


@cli.group()
@click.option("--user", "-u", default=None, help="Username (default: $USER).")
@click.pass_context
def avatar(ctx: click.Context, user: str | None) -> None:
    """Manage your terminal avatar.

    Your avatar is generated deterministically from your username and level
    and changes appearance as you reach new milestones.
    """
    ctx.obj["user"] = _current_username(user)


# ---------------------------------------------------------------------------
# termonaut avatar show
# ---------------------------------------------------------------------------


@avatar.command()
@_size_option(None)
@click.option("--level", "-l", default=1, type=click.IntRange(min=1), help="Current level.")
@click.option("--style", default=None, help="Avatar style (default from config).")
@click.option("--verbose", "-v", is_flag=True, help="Show avatar details.")
@click.pass_context
def show(ctx: click.Context, size_name: str | None, level: int, style: str | None, verbose: bool) -> None:
    """Display your current avatar."""
    manager = _manager(ctx)
    username = ctx.obj["user"]
    size = AvatarSize.from_name(size_name) if size_name else manager.config.size
    request = AvatarRequest(
        username=username,
        level=level,
        style=style or manager.config.default_style,
        size=size,
    )
    try:
        result = manager.generate(request)
    except AvatarError as exc:
        _error(f"Error: failed to generate avatar: {exc}")

    click.echo(f"{username}'s Avatar - Level {level}")
    click.echo("=" * 40)
    click.echo()
    click.echo(result.ascii_art)
    click.echo()

    if verbose:
        click.echo("Avatar Info:")
        click.echo(f"  Style:       {result.style}")
        click.echo(f"  Seed:        {result.seed}")
        click.echo(f"  Generated:   {result.generated_at:%Y-%m-%d %H:%M:%S}")
        click.echo(f"  Fingerprint: {result.fingerprint}")
        click.echo(f"  Size:        {result.size.ascii_width}x{result.size.ascii_height}")
        click.echo()

    next_level = next_evolution_level(level)
    if next_level is not None:
        click.echo(f"Next evolution: level {next_level}")
    else:
        click.echo("Maximum evolution reached!")


# ---------------------------------------------------------------------------
# termonaut avatar refresh
# ---------------------------------------------------------------------------


@avatar.command()
@click.option("--level", "-l", default=None, type=click.IntRange(min=1), help="Current level.")
@click.pass_context
def refresh(ctx: click.Context, level: int | None) -> None:
    """Force regeneration of your avatar, bypassing the cache."""
    manager = _manager(ctx)
    username = ctx.obj["user"]
    click.echo(f"Refreshing avatar for {username}...")
    try:
        result = manager.refresh(username, level=level)
    except AvatarError as exc:
        _error(f"Error: failed to refresh avatar: {exc}")

    if result.is_fallback:
        click.echo("Avatar regenerated offline (DiceBear unreachable).")
    else:
        click.echo("Avatar refreshed successfully!")


# ---------------------------------------------------------------------------
# termonaut avatar preview
# ---------------------------------------------------------------------------


@avatar.command()
@click.option("--level", "-l", required=True, type=click.IntRange(min=1), help="Level to preview.")
@_size_option("small")
@click.pass_context
def preview(ctx: click.Context, level: int, size_name: str) -> None:
    """Preview how your avatar looks at another level."""
    manager = _manager(ctx)
    username = ctx.obj["user"]
    request = AvatarRequest(
        username=username,
        level=level,
        style=manager.config.default_style,
        size=AvatarSize.from_name(size_name),
    )
    try:
        result = manager.generate(request)
    except AvatarError as exc:
        _error(f"Error: failed to generate preview avatar: {exc}")

    click.echo(f"Preview: {username} at Level {level}")
    click.echo("=" * 40)
    click.echo()
    click.echo(result.ascii_art)
    click.echo()


# ---------------------------------------------------------------------------
# termonaut avatar stats
# ---------------------------------------------------------------------------


@avatar.command()
@click.option("--verbose", "-v", is_flag=True, help="Show detailed statistics.")
@click.pass_context
def stats(ctx: click.Context, verbose: bool) -> None:
    """Show avatar cache statistics."""
    manager = _manager(ctx)
    cache_stats = manager.cache_stats()

    click.echo("Avatar System Statistics")
    click.echo("=" * 40)
    click.echo(f"  Total entries:   {cache_stats.total_entries}")
    click.echo(f"  Valid entries:   {cache_stats.valid_entries}")
    click.echo(f"  Expired entries: {cache_stats.expired_entries}")
    click.echo(f"  Total accesses:  {cache_stats.total_access_count}")
    click.echo(f"  Hit rate:        {cache_stats.hit_rate:.2f}")
    click.echo(f"  Total size:      {_format_bytes(cache_stats.total_size)}")

    if verbose:
        click.echo()
        click.echo(f"  Cache directory: {manager.cache.cache_dir}")
        click.echo(f"  Cache TTL:       {manager.cache.ttl}")
        click.echo(f"  On-disk size:    {_format_bytes(manager.cache.get_cache_size())}")
        click.echo(f"  Size budget:     {_format_bytes(manager.config.max_cache_bytes)}")


# ---------------------------------------------------------------------------
# termonaut avatar styles
# ---------------------------------------------------------------------------


@avatar.command()
def styles() -> None:
    """List the supported avatar styles."""
    for name in list_supported_styles():
        info = style_info(name)
        marker = " (recommended)" if info.recommended else ""
        click.echo(f"{name:<12} {info.description}{marker}")


# ---------------------------------------------------------------------------
# termonaut avatar config
# ---------------------------------------------------------------------------


@avatar.command("config")
def show_config() -> None:
    """Show the effective avatar configuration."""
    try:
        cfg = AvatarConfig()
    except ValueError as exc:
        _error(f"Error: {exc}")

    click.echo("Current Avatar Configuration:")
    click.echo("=" * 40)
    click.echo(f"  Style:        {cfg.default_style}")
    click.echo(f"  Size:         {cfg.default_size}")
    click.echo(f"  Cache dir:    {cfg.cache_dir}")
    click.echo(f"  Cache TTL:    {cfg.cache_ttl:.0f}s")
    click.echo(f"  API URL:      {cfg.api_base_url}")
    click.echo(f"  API timeout:  {cfg.api_timeout:.1f}s")
    click.echo()
    click.echo("Sizes:")
    for name, size in SIZES.items():
        click.echo(f"  {name:<7} {size.ascii_width}x{size.ascii_height}")
    click.echo()
    click.echo("Set TERMONAUT_AVATAR_STYLE / TERMONAUT_AVATAR_SIZE or the [avatar]")
    click.echo("table of config.toml to change the defaults.")


# ---------------------------------------------------------------------------
# termonaut avatar clean
# ---------------------------------------------------------------------------


@avatar.command()
@click.option("--max-bytes", default=None, type=click.IntRange(min=0), help="Size budget in bytes.")
@click.option("--expired", "expired_only", is_flag=True, help="Only remove expired entries.")
@click.option("--all", "clear_all", is_flag=True, help="Remove every cached avatar.")
@click.pass_context
def clean(ctx: click.Context, max_bytes: int | None, expired_only: bool, clear_all: bool) -> None:
    """Trim the avatar cache (least recently used first)."""
    manager = _manager(ctx)
    try:
        if clear_all:
            manager.clear_cache()
            click.echo("Avatar cache cleared.")
            return
        if expired_only:
            removed = manager.cache.sweep_expired()
        else:
            removed = manager.evict_by_size(max_bytes)
    except AvatarError as exc:
        _error(f"Error: {exc}")

    click.echo(f"Removed {removed} cached avatar(s).")
