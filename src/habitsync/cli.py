"""Flask CLI commands for HabitSync."""

from __future__ import annotations

from datetime import date, timedelta

import click

DEMO_HABITS = (
    {"name": "Read 20 pages", "color": "blue", "icon": "📚"},
    {"name": "Morning run", "color": "green", "icon": "🏃"},
    {"name": "Meditate", "color": "purple", "icon": "🧘", "target_frequency": "weekly"},
)


def init_app(app) -> None:
    """Register CLI commands on the Flask app."""

    @app.cli.command("habitsync-init-db")
    def habitsync_init_db() -> None:
        """Create database tables."""

        from .extensions import get_services
        from .infra.database import init_database

        init_database(get_services().engine)
        click.echo("Database schema ready.")

    @app.cli.command("habitsync-seed")
    @click.option("--email", default="demo@habitsync.local", show_default=True)
    @click.option("--days", default=14, show_default=True, help="Days of history to create")
    def habitsync_seed(email: str, days: int) -> None:
        """Create a demo user with habits and a few weeks of entries."""

        from .extensions import get_services
        from .models import EntryToggle, HabitCreate

        services = get_services()
        user = services.users.get_by_email(email) or services.users.create(
            email, full_name="Demo User"
        )
        today = date.today()
        for index, fields in enumerate(DEMO_HABITS):
            habit = services.habits.create(HabitCreate(**fields), user_id=user.id)
            for offset in range(days):
                # Skip some days so streaks and rates differ per habit.
                if (offset + index) % (index + 2) == 0:
                    continue
                services.habits.toggle_entry(
                    habit.id,
                    EntryToggle(date=today - timedelta(days=offset), completed=True),
                    user_id=user.id,
                )
        click.echo(f"Seeded demo data for user {user.id}")

    @app.cli.command("habitsync-stats")
    @click.option("--user", "user_id", required=True, help="User id to report on")
    @click.option(
        "--period",
        type=click.Choice(["today", "week", "month"]),
        default="week",
        show_default=True,
    )
    def habitsync_stats(user_id: str, period: str) -> None:
        """Print completion statistics for a user."""

        from .extensions import get_services
        from .services.stats import compute_stats

        services = get_services()
        if services.users.get(user_id) is None:
            raise click.ClickException(f"Unknown user {user_id}")
        habits = services.habits.list_active(user_id=user_id)
        entries = services.habits.list_entries(user_id=user_id)
        stats = compute_stats(habits, entries, period)
        for name, value in stats.to_dict().items():
            click.echo(f"{name}: {value}")
