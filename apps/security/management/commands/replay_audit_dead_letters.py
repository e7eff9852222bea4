"""
Management command to replay dead-lettered audit events.
"""
from django.core.management.base import BaseCommand

from apps.security.audit import AuditLogWriter
from apps.security.models import AuditDeadLetter


class Command(BaseCommand):
    help = 'Write dead-lettered audit events to the audit trail'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum number of dead letters to replay',
        )

    def handle(self, *args, **options):
        pending = AuditDeadLetter.objects.pending().count()
        if not pending:
            self.stdout.write('No pending dead letters')
            return

        self.stdout.write(f'Replaying up to {options["limit"] or pending} of {pending} dead letters')
        result = AuditLogWriter.replay_dead_letters(limit=options['limit'])

        self.stdout.write(self.style.SUCCESS(f"Replayed: {result['replayed']}"))
        if result['failed']:
            self.stdout.write(self.style.WARNING(f"Still failing: {result['failed']}"))
