"""
Management command to verify and optionally repair the protected identity.
"""
import json

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import IntegrityCorrupted
from apps.security.integrity import IntegrityChecker


class Command(BaseCommand):
    help = 'Check the protected identity and optionally repair it'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Repair the protected identity when the check fails',
        )
        parser.add_argument(
            '--format',
            choices=['text', 'json'],
            default='text',
            help='Output format (default: text)'
        )

    def handle(self, *args, **options):
        report = IntegrityChecker.check_integrity()

        if options['format'] == 'json':
            self.stdout.write(json.dumps(report.as_dict(), indent=2, default=str))
        else:
            self._display_report(report)

        if report.is_ok:
            return

        if not options['fix']:
            raise CommandError(
                f"Protected identity is {report.status}. Run with --fix to repair it."
            )

        try:
            result = IntegrityChecker.auto_fix(triggered_by='cli')
        except IntegrityCorrupted as e:
            raise CommandError(f"Repair failed: {e.message}")

        self.stdout.write(
            self.style.SUCCESS(f"Protected identity repaired: {result.action}")
        )
        fixed = result.details.get('fixed_fields')
        if fixed:
            self.stdout.write(f"  Fixed fields: {', '.join(fixed)}")

    def _display_report(self, report):
        if report.is_ok:
            self.stdout.write(self.style.SUCCESS('Protected identity: ok'))
            return

        self.stdout.write(self.style.WARNING(f'Protected identity: {report.status}'))
        for name, values in report.details.get('drifted_fields', {}).items():
            self.stdout.write(
                f"  {name}: expected {values['expected']!r}, found {values['actual']!r}"
            )
        if report.details.get('membership_missing'):
            self.stdout.write('  Owner membership of the master organization is missing')
        if report.details.get('registration_missing'):
            self.stdout.write('  Protection record is missing')
