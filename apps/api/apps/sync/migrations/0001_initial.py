# Initial migration for sync app

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='SyncCursor',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('value', models.TextField(default='0')),
                ('documents_applied', models.PositiveBigIntegerField(default=0)),
                ('documents_skipped', models.PositiveBigIntegerField(default=0)),
                ('documents_errored', models.PositiveBigIntegerField(default=0)),
                ('cycles_completed', models.PositiveBigIntegerField(default=0)),
                ('cycles_failed', models.PositiveBigIntegerField(default=0)),
                ('last_cycle_at', models.DateTimeField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Sync Cursor',
                'verbose_name_plural': 'Sync Cursors',
                'db_table': 'sync_cursor',
            },
        ),
    ]
