"""
Management command to mirror CouchDB documents into the relational store.

Usage:
    python manage.py couchdb_sync                 # one cycle
    python manage.py couchdb_sync --drain         # cycles until caught up
    python manage.py couchdb_sync --daemon        # poll until SIGINT/SIGTERM
    python manage.py couchdb_sync --status
    python manage.py couchdb_sync --reset --force # replay the full feed

Exit status of one-shot runs: 0 clean, 2 when documents were skipped
with errors, 1 when the cycle itself failed.
"""
import signal

from django.core.management.base import BaseCommand, CommandError

from apps.sync.couchdb import CouchDbClient
from apps.sync.cursor import CursorStore
from apps.sync.engine import SyncEngine
from apps.sync.exceptions import ChangeSourceError, StoreUnavailable


class Command(BaseCommand):
    help = 'Apply the CouchDB change feed to the relational mirror tables'

    def add_arguments(self, parser):
        parser.add_argument(
            '--daemon',
            action='store_true',
            help='Keep polling until interrupted',
        )
        parser.add_argument(
            '--drain',
            action='store_true',
            help='Run cycles until the feed reports no pending changes',
        )
        parser.add_argument(
            '--poll',
            type=float,
            default=None,
            help='Seconds between polls in daemon mode (default: SYNC_POLL_INTERVAL)',
        )
        parser.add_argument(
            '--batch',
            type=int,
            default=None,
            help='Changes fetched per cycle (default: SYNC_BATCH_SIZE)',
        )
        parser.add_argument(
            '--status',
            action='store_true',
            help='Print the cursor position and counters, then exit',
        )
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Rewind the cursor to the start of the feed',
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Required with --reset',
        )

    def handle(self, *args, **options):
        cursor_store = CursorStore()

        if options['status']:
            self._print_status(cursor_store.get())
            return

        if options['reset']:
            if not options['force']:
                raise CommandError('--reset replays every document; pass --force to confirm')
            cursor_store.reset()
            self.stdout.write(self.style.WARNING('Sync cursor reset to the start of the feed'))
            return

        if options['batch'] is not None and options['batch'] < 1:
            raise CommandError('--batch must be a positive integer')

        with CouchDbClient.from_settings() as client:
            engine = SyncEngine(
                client,
                cursor_store=cursor_store,
                batch_size=options['batch'],
                poll_interval=options['poll'],
            )

            if options['daemon']:
                self._install_signal_handlers(engine)
                self.stdout.write(
                    f'Polling {client.database} every {engine.poll_interval}s '
                    f'(batch {engine.batch_size}); Ctrl+C to stop'
                )
                engine.run_forever()
                self.stdout.write(self.style.SUCCESS('Sync worker stopped'))
                return

            try:
                results = engine.drain() if options['drain'] else [engine.run_once()]
            except (ChangeSourceError, StoreUnavailable) as e:
                raise CommandError(f'Sync cycle failed: {e}', returncode=1)

        self._report(results)

    def _install_signal_handlers(self, engine):
        def handle_signal(signum, frame):
            self.stdout.write(self.style.WARNING('Stopping after the current document...'))
            engine.stop()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    def _report(self, results):
        applied = sum(r.applied for r in results)
        skipped = sum(r.skipped for r in results)
        errored = sum(r.errored for r in results)
        last_seq = results[-1].last_seq if results else None

        summary = (
            f'{len(results)} cycle(s): {applied} applied, {skipped} skipped, '
            f'{errored} errored; cursor at {last_seq}'
        )
        if errored:
            raise CommandError(summary, returncode=2)
        self.stdout.write(self.style.SUCCESS(summary))

    def _print_status(self, cursor):
        self.stdout.write(f'Cursor:            {cursor.name}')
        self.stdout.write(f'Sequence:          {cursor.value}')
        self.stdout.write(f'Last cycle:        {cursor.last_cycle_at or "never"}')
        self.stdout.write(f'Cycles completed:  {cursor.cycles_completed}')
        self.stdout.write(f'Cycles failed:     {cursor.cycles_failed}')
        self.stdout.write(f'Documents applied: {cursor.documents_applied}')
        self.stdout.write(f'Documents skipped: {cursor.documents_skipped}')
        self.stdout.write(f'Documents errored: {cursor.documents_errored}')
        if cursor.last_error:
            self.stdout.write(self.style.ERROR(f'Last error:        {cursor.last_error}'))
