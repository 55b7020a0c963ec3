"""Custom Click group with automatic help display on errors.

A usage error (unknown command, missing argument, bad option value) prints the
error followed by the help of the command it happened in.
"""

from typing import Any, NoReturn

import click

USAGE_ERRORS = (
    click.exceptions.UsageError,
    click.exceptions.BadParameter,
    click.exceptions.MissingParameter,
)


def _exit_with_help(error: click.exceptions.UsageError, ctx: click.Context) -> NoReturn:
    click.echo(f"Error: {error.format_message()}", err=True)
    click.echo("")
    click.echo(ctx.get_help())
    # ctx.exit() keeps CliRunner able to capture the exit code
    ctx.exit(error.exit_code)


class RootfsprepGroup(click.Group):
    """Click group that shows contextual help alongside usage errors."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except USAGE_ERRORS as e:
            # Prefer the subcommand context the error came from
            _exit_with_help(e, e.ctx or ctx)

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        """Override to show help when command is not found."""
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            # Parameter errors are reported by invoke() with the subcommand's help
            if isinstance(e, click.exceptions.MissingParameter | click.exceptions.BadParameter):
                raise
            _exit_with_help(e, ctx)


# Subgroups created with @main.group() also use RootfsprepGroup
RootfsprepGroup.group_class = RootfsprepGroup
