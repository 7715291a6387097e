import click
import csv
import io
import logging

logger = logging.getLogger(__name__)


def register_commands(app):
    @app.cli.command('reconcile')
    @click.option('--limit', type=int, default=None, help='Maximum enrollments to retry')
    def reconcile(limit):
        """Retry ledger sync for completed but unsynced enrollments."""
        from .services.settlement import SettlementCoordinator

        results = SettlementCoordinator().reconcile_unsynced(limit=limit)
        synced = sum(1 for _, _, result in results if result.sync_status == 'synced')
        for user_id, course_id, result in results:
            click.echo(f"{user_id}/{course_id}: {result.sync_status} {result.tx_hash or ''}".rstrip())
        click.echo(f"Synced {synced} of {len(results)} enrollments")

    @app.cli.command('export-leaderboard')
    @click.argument('course_id', type=int)
    @click.option('--top', type=int, default=100, help='Number of ranked entries to export')
    def export_leaderboard(course_id, top):
        """Write a course leaderboard as CSV to stdout."""
        from .services.errors import SettlementError
        from .services.leaderboard import EXPORT_MAX_LIMIT, get_leaderboard

        try:
            _, entries = get_leaderboard(course_id, top, max_limit=EXPORT_MAX_LIMIT)
        except SettlementError as e:
            raise click.ClickException(e.message)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(['rank', 'wallet_address', 'final_score', 'base_score', 'quiz_score',
                         'engagement_time_score', 'completed_at'])
        for entry in entries:
            writer.writerow([entry['rank'], entry['walletAddress'], entry['finalScore'],
                             entry['baseScore'], entry['quizScore'],
                             entry['engagementTimeScore'], entry['completedAt'] or ''])
        click.echo(buffer.getvalue(), nl=False)

    @app.cli.command('verify-relayer')
    def verify_relayer():
        """Check the relayer account against the contract."""
        from .services.relayer import build_ledger_client

        valid, error = build_ledger_client().verify_relayer_setup()
        if valid:
            click.echo('Relayer setup is valid')
        else:
            click.echo(f'Relayer setup is invalid: {error}', err=True)
            raise SystemExit(1)
