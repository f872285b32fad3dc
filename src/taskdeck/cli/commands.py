# src/taskdeck/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..auth.guard import RedirectTo, Suspend
from ..core.errors import AppError, ErrorKind
from ..core.state import AppContext
from ..tasks.task_api import add_task_for_current_user, current_owner, resolve_task
from .views import TodosView, render_tasks

CommandEmitter = Callable[[str], None]

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    app: AppContext
    emit: CommandEmitter
    view: TodosView | None = None


CommandHandler = Callable[[CommandContext, list[str]], Awaitable[str]]


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /login, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, ctx: CommandContext, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return await handler(ctx, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def friendly_error_message(err: AppError | None) -> str:
    if err is None:
        return "Something went wrong."
    if err.kind is ErrorKind.INVALID_CREDENTIALS:
        return "Wrong email or password."
    if err.kind is ErrorKind.ACCOUNT_EXISTS:
        return "An account with this email already exists. Try /login."
    if err.kind is ErrorKind.UNAUTHENTICATED:
        return "You are not signed in (or the session expired). Use /login."
    if err.kind is ErrorKind.NETWORK:
        return f"Network problem: {err.message} Try again."
    if err.kind is ErrorKind.NOT_FOUND:
        return f"Not found: {err.message}"
    return err.message


def _usage(text: str) -> str:
    return f"Usage: {text}"


# ---- account ----


async def cmd_help(ctx: CommandContext, args: list[str]) -> str:
    return registry.build_help()


async def cmd_signup(ctx: CommandContext, args: list[str]) -> str:
    if len(args) < 2:
        return _usage("/signup <email> <password> [username]")
    username = args[2] if len(args) > 2 else None
    result, err = await ctx.app.auth.sign_up(args[0], args[1], username=username)
    if result is None:
        return friendly_error_message(err)
    if result.requires_confirmation:
        return f"Account created for {args[0]}. Check your inbox to confirm, then /login."
    return f"Welcome, {result.user.username or result.user.email}! You are signed in."


async def cmd_login(ctx: CommandContext, args: list[str]) -> str:
    if len(args) < 2:
        return _usage("/login <email> <password>")
    session, err = await ctx.app.auth.sign_in(args[0], args[1])
    if session is None:
        return friendly_error_message(err)
    return f"Signed in as {session.user.email or session.user.id}. Open your list with /todos."


async def cmd_oauth(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/oauth google|github")
    _, err = await ctx.app.auth.sign_in_with_provider(args[0])
    if err is not None:
        return friendly_error_message(err)
    return "Browser opened. After signing in, paste the address you land on: /callback <url>"


async def cmd_callback(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/callback <redirect url>")
    session, err = await ctx.app.auth.complete_redirect(args[0])
    if session is None:
        return friendly_error_message(err)
    if "type=recovery" in args[0]:
        return "Recovery link accepted. Choose a new password with /password <new>."
    return f"Signed in as {session.user.email or session.user.id}."


async def cmd_forgot(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/forgot <email>")
    _, err = await ctx.app.auth.request_password_reset(args[0])
    if err is not None:
        return friendly_error_message(err)
    return "If an account exists for that address, a reset link is on its way."


async def cmd_password(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/password <new password>")
    _, err = await ctx.app.auth.update_password(args[0])
    if err is not None:
        return friendly_error_message(err)
    return "Password updated."


async def cmd_profile(ctx: CommandContext, args: list[str]) -> str:
    """
    /profile                       -> show profile
    /profile username=x full_name=y -> update fields
    """
    owner = current_owner(ctx.app)
    if owner is None:
        return friendly_error_message(AppError(ErrorKind.UNAUTHENTICATED, "not signed in"))

    if not args:
        profile, err = await ctx.app.profiles.fetch_profile(owner)
        if err is not None:
            return friendly_error_message(err)
        if profile is None:
            return "No profile yet. Set one with /profile username=<name>."
        return (
            "Profile:\n"
            f"  username: {profile.username or '-'}\n"
            f"  full_name: {profile.full_name or '-'}\n"
            f"  avatar_url: {profile.avatar_url or '-'}"
        )

    patch: dict[str, str] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep:
            return _usage("/profile key=value [key=value ...]")
        patch[key.strip()] = value.strip()
    user, err = await ctx.app.auth.update_profile(patch)
    if user is None:
        return friendly_error_message(err)
    return f"Profile updated ({', '.join(sorted(patch))})."


async def cmd_logout(ctx: CommandContext, args: list[str]) -> str:
    await ctx.app.auth.sign_out()
    return "Signed out."


async def cmd_whoami(ctx: CommandContext, args: list[str]) -> str:
    session = ctx.app.sessions.get_session()
    if session is None:
        return f"Not signed in (state: {ctx.app.sessions.state.value})."
    user = session.user
    return f"{user.email or '-'} (id={user.id}, username={user.username or '-'})"


async def cmd_status(ctx: CommandContext, args: list[str]) -> str:
    view = ctx.view
    live = "off"
    if view is not None and view.active:
        live = f"on ({len(view.tasks)} tasks)"
    return (
        "Status:\n"
        f"  Session: {ctx.app.sessions.state.value}\n"
        f"  Service: {getattr(ctx.app.settings, 'service_url', '-')}\n"
        f"  Live task list: {live}"
    )


# ---- tasks ----


async def cmd_todos(ctx: CommandContext, args: list[str]) -> str:
    if ctx.view is None:
        return "Task view is not available in this context."
    decision = await ctx.view.activate()
    if isinstance(decision, RedirectTo):
        return f"Sign in to see your tasks ({decision.location})."
    if isinstance(decision, Suspend):
        return "Still restoring the session, try again in a moment."
    return "Live task list on. Changes from any device show up here; /leave to stop."


async def cmd_leave(ctx: CommandContext, args: list[str]) -> str:
    if ctx.view is None or not ctx.view.active:
        return "Task view is not open."
    await ctx.view.deactivate()
    return "Left the task view."


def _cached(ctx: CommandContext):
    return ctx.view.tasks if ctx.view is not None and ctx.view.active else None


async def cmd_add(ctx: CommandContext, args: list[str]) -> str:
    """/add <title> [| description]"""
    text = " ".join(args)
    title, _, description = text.partition("|")
    if not title.strip():
        return _usage("/add <title> [| description]")
    task, err = await add_task_for_current_user(ctx.app, title=title, description=description or None)
    if task is None:
        return friendly_error_message(err)
    return f"Added: {task.title}"


async def cmd_done(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/done <number|id>")
    task, err = await resolve_task(ctx.app, args[0], cached=_cached(ctx))
    if task is None:
        return friendly_error_message(err)
    updated, err = await ctx.app.tasks.toggle_completion(task.id, task.owner_id)
    if updated is None:
        return friendly_error_message(err)
    return f"{'Completed' if updated.is_complete else 'Reopened'}: {updated.title}"


async def cmd_edit(ctx: CommandContext, args: list[str]) -> str:
    """/edit <number|id> <new title> [| description]"""
    if len(args) < 2:
        return _usage("/edit <number|id> <new title> [| description]")
    task, err = await resolve_task(ctx.app, args[0], cached=_cached(ctx))
    if task is None:
        return friendly_error_message(err)
    title, sep, description = " ".join(args[1:]).partition("|")
    patch: dict[str, object] = {"title": title}
    if sep:
        patch["description"] = description.strip() or None
    updated, err = await ctx.app.tasks.update_task(task.id, task.owner_id, patch)
    if updated is None:
        return friendly_error_message(err)
    return f"Updated: {updated.title}"


async def cmd_rm(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        return _usage("/rm <number|id>")
    task, err = await resolve_task(ctx.app, args[0], cached=_cached(ctx))
    if task is None:
        return friendly_error_message(err)
    _, err = await ctx.app.tasks.delete_task(task.id, task.owner_id)
    if err is not None:
        return friendly_error_message(err)
    return f"Deleted: {task.title}"


async def cmd_list(ctx: CommandContext, args: list[str]) -> str:
    """One-off listing without opening the live view."""
    owner = current_owner(ctx.app)
    if owner is None:
        return friendly_error_message(AppError(ErrorKind.UNAUTHENTICATED, "not signed in"))
    tasks, err = await ctx.app.tasks.list_tasks(owner)
    if err is not None:
        return friendly_error_message(err)
    return render_tasks(tasks or [])


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("signup", cmd_signup, help_text="Create an account: /signup <email> <password> [username].")
registry.register("login", cmd_login, help_text="Sign in: /login <email> <password>.")
registry.register("oauth", cmd_oauth, help_text="Sign in with a provider: /oauth google|github.")
registry.register("callback", cmd_callback, help_text="Finish a browser sign-in or email link: /callback <url>.")
registry.register("forgot", cmd_forgot, help_text="Send a password reset link: /forgot <email>.")
registry.register("password", cmd_password, help_text="Change your password: /password <new>.")
registry.register("profile", cmd_profile, help_text="Show or edit profile: /profile [key=value ...].")
registry.register("logout", cmd_logout, help_text="Sign out.")
registry.register("whoami", cmd_whoami, help_text="Show the signed-in user.")
registry.register("status", cmd_status, help_text="Show session and live-list status.")
registry.register("todos", cmd_todos, help_text="Open the live task list (sign-in required).")
registry.register("leave", cmd_leave, help_text="Close the live task list.")
registry.register("list", cmd_list, help_text="Print your tasks once.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [| description].")
registry.register("done", cmd_done, help_text="Toggle completion: /done <number|id>.")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <number|id> <title> [| description].")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <number|id>.", aliases=["del"])
