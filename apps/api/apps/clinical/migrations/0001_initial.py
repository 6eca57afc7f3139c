# Initial migration for clinical app

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


WORKFLOW_STATES = [
    ('NEW', 'New'),
    ('TRIAGED', 'Triaged'),
    ('REFERRED', 'Referred'),
    ('IN_GP_REVIEW', 'In GP Review'),
    ('UNDER_TREATMENT', 'Under Treatment'),
    ('CLOSED', 'Closed'),
    ('CANCELLED', 'Cancelled'),
]


def mirrored_fields():
    """Columns shared by every mirrored document table."""
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('couch_id', models.CharField(max_length=255, unique=True)),
        ('couch_rev', models.CharField(blank=True, max_length=100, null=True)),
        ('couch_updated_at', models.DateTimeField(blank=True, null=True)),
        ('synced_at', models.DateTimeField(blank=True, null=True)),
        ('raw_document', models.JSONField(blank=True, default=dict)),
        ('is_deleted', models.BooleanField(default=False)),
        ('deleted_at', models.DateTimeField(blank=True, null=True)),
        ('created_at', models.DateTimeField(auto_now_add=True)),
        ('updated_at', models.DateTimeField(auto_now=True)),
    ]


def user_fk(related_name):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Patient',
            fields=mirrored_fields() + [
                ('cpt', models.CharField(help_text='Clinical patient tag (short identifier)', max_length=50, unique=True)),
                ('short_code', models.CharField(blank=True, max_length=20, null=True)),
                ('external_id', models.CharField(blank=True, max_length=100, null=True)),
                ('date_of_birth', models.DateField(blank=True, null=True)),
                ('age_months', models.PositiveIntegerField(blank=True, null=True)),
                ('gender', models.CharField(blank=True, max_length=20, null=True)),
                ('weight_kg', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('phone', models.CharField(blank=True, max_length=50, null=True)),
                ('visit_count', models.PositiveIntegerField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('is_encrypted', models.BooleanField(default=False)),
                ('last_visit_at', models.DateTimeField(blank=True, null=True)),
                ('source', models.CharField(blank=True, max_length=50, null=True)),
                ('created_by', user_fk('created_patients')),
            ],
            options={
                'verbose_name': 'Patient',
                'verbose_name_plural': 'Patients',
                'db_table': 'patients',
                'indexes': [
                    models.Index(fields=['is_active'], name='idx_patient_active'),
                    models.Index(fields=['last_visit_at'], name='idx_patient_last_visit'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ClinicalSession',
            fields=mirrored_fields() + [
                ('session_uuid', models.CharField(blank=True, max_length=255, null=True)),
                ('patient_cpt', models.CharField(blank=True, max_length=50, null=True)),
                ('stage', models.CharField(default='registration', max_length=50)),
                ('status', models.CharField(default='open', max_length=50)),
                ('triage_priority', models.CharField(default='unknown', max_length=20)),
                ('chief_complaint', models.TextField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('form_instance_ids', models.JSONField(blank=True, default=list)),
                ('session_created_at', models.DateTimeField(blank=True, null=True)),
                ('session_updated_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('workflow_state', models.CharField(choices=WORKFLOW_STATES, default='NEW', max_length=20)),
                ('workflow_state_updated_at', models.DateTimeField(blank=True, null=True)),
                ('provider_role', models.CharField(blank=True, max_length=50, null=True)),
                ('created_by', user_fk('created_sessions')),
            ],
            options={
                'verbose_name': 'Clinical Session',
                'verbose_name_plural': 'Clinical Sessions',
                'db_table': 'clinical_sessions',
                'indexes': [
                    models.Index(fields=['patient_cpt'], name='idx_session_patient'),
                    models.Index(fields=['workflow_state'], name='idx_session_wf_state'),
                    models.Index(fields=['triage_priority'], name='idx_session_triage'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ClinicalForm',
            fields=mirrored_fields() + [
                ('form_uuid', models.CharField(blank=True, max_length=255, null=True)),
                ('session_couch_id', models.CharField(blank=True, max_length=255, null=True)),
                ('patient_cpt', models.CharField(blank=True, max_length=50, null=True)),
                ('schema_id', models.CharField(default='unknown', max_length=100)),
                ('schema_version', models.CharField(blank=True, max_length=20, null=True)),
                ('current_state_id', models.CharField(blank=True, max_length=100, null=True)),
                ('status', models.CharField(default='draft', max_length=50)),
                ('sync_status', models.CharField(default='synced', max_length=20)),
                ('answers', models.JSONField(blank=True, default=dict)),
                ('calculated', models.JSONField(blank=True, null=True)),
                ('audit_log', models.JSONField(blank=True, null=True)),
                ('form_created_at', models.DateTimeField(blank=True, null=True)),
                ('form_updated_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('creator_role', models.CharField(blank=True, max_length=50, null=True)),
                ('created_by', user_fk('created_forms')),
            ],
            options={
                'verbose_name': 'Clinical Form',
                'verbose_name_plural': 'Clinical Forms',
                'db_table': 'clinical_forms',
                'indexes': [
                    models.Index(fields=['session_couch_id'], name='idx_form_session'),
                    models.Index(fields=['schema_id'], name='idx_form_schema'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AiRequest',
            fields=mirrored_fields() + [
                ('request_uuid', models.CharField(blank=True, max_length=255, null=True)),
                ('role', models.CharField(blank=True, max_length=50, null=True)),
                ('session_couch_id', models.CharField(blank=True, max_length=255, null=True)),
                ('form_couch_id', models.CharField(blank=True, max_length=255, null=True)),
                ('patient_cpt', models.CharField(blank=True, max_length=50, null=True)),
                ('task', models.CharField(blank=True, max_length=100, null=True)),
                ('use_case', models.CharField(blank=True, max_length=100, null=True)),
                ('prompt_version', models.CharField(blank=True, max_length=50, null=True)),
                ('input_hash', models.CharField(blank=True, max_length=128, null=True)),
                ('prompt', models.TextField(blank=True, null=True)),
                ('response', models.TextField(blank=True, null=True)),
                ('safe_output', models.TextField(blank=True, null=True)),
                ('model', models.CharField(blank=True, max_length=100, null=True)),
                ('model_version', models.CharField(blank=True, max_length=50, null=True)),
                ('latency_ms', models.PositiveIntegerField(blank=True, null=True)),
                ('was_overridden', models.BooleanField(default=False)),
                ('risk_flags', models.JSONField(blank=True, null=True)),
                ('requested_at', models.DateTimeField(blank=True, null=True)),
                ('user', user_fk('ai_requests')),
            ],
            options={
                'verbose_name': 'AI Request',
                'verbose_name_plural': 'AI Requests',
                'db_table': 'ai_requests',
                'indexes': [
                    models.Index(fields=['session_couch_id'], name='idx_ai_request_session'),
                    models.Index(fields=['task'], name='idx_ai_request_task'),
                    models.Index(fields=['requested_at'], name='idx_ai_request_requested'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Referral',
            fields=mirrored_fields() + [
                ('referral_uuid', models.CharField(blank=True, max_length=255, null=True)),
                ('session_couch_id', models.CharField(blank=True, max_length=255, null=True)),
                ('assigned_to_role', models.CharField(blank=True, max_length=50, null=True)),
                ('status', models.CharField(default='pending', max_length=20)),
                ('priority', models.CharField(default='yellow', max_length=20)),
                ('specialty', models.CharField(blank=True, max_length=100, null=True)),
                ('reason', models.TextField(blank=True, null=True)),
                ('clinical_notes', models.TextField(blank=True, null=True)),
                ('rejection_reason', models.TextField(blank=True, null=True)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('referring_user', user_fk('referrals_made')),
                ('assigned_to_user', user_fk('referrals_assigned')),
            ],
            options={
                'verbose_name': 'Referral',
                'verbose_name_plural': 'Referrals',
                'db_table': 'referrals',
                'indexes': [
                    models.Index(fields=['session_couch_id'], name='idx_referral_session'),
                    models.Index(fields=['status'], name='idx_referral_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RadiologyStudy',
            fields=mirrored_fields() + [
                ('study_uuid', models.CharField(blank=True, max_length=255, null=True)),
                ('patient_cpt', models.CharField(blank=True, max_length=50, null=True)),
                ('session_couch_id', models.CharField(blank=True, max_length=255, null=True)),
                ('modality', models.CharField(blank=True, max_length=20, null=True)),
                ('body_part', models.CharField(blank=True, max_length=100, null=True)),
                ('study_type', models.CharField(blank=True, max_length=100, null=True)),
                ('clinical_indication', models.TextField(blank=True, null=True)),
                ('clinical_question', models.TextField(blank=True, null=True)),
                ('priority', models.CharField(default='routine', max_length=20)),
                ('status', models.CharField(default='pending', max_length=20)),
                ('ai_priority_score', models.PositiveIntegerField(blank=True, null=True)),
                ('ai_critical_flag', models.BooleanField(default=False)),
                ('ai_preliminary_report', models.TextField(blank=True, null=True)),
                ('dicom_series_count', models.PositiveIntegerField(blank=True, null=True)),
                ('dicom_storage_path', models.CharField(blank=True, max_length=500, null=True)),
                ('ordered_at', models.DateTimeField(blank=True, null=True)),
                ('scheduled_at', models.DateTimeField(blank=True, null=True)),
                ('performed_at', models.DateTimeField(blank=True, null=True)),
                ('images_available_at', models.DateTimeField(blank=True, null=True)),
                ('study_completed_at', models.DateTimeField(blank=True, null=True)),
                ('referring_user', user_fk('radiology_studies_referred')),
                ('assigned_radiologist', user_fk('radiology_studies_assigned')),
            ],
            options={
                'verbose_name': 'Radiology Study',
                'verbose_name_plural': 'Radiology Studies',
                'db_table': 'radiology_studies',
                'indexes': [
                    models.Index(fields=['patient_cpt'], name='idx_radiology_patient'),
                    models.Index(fields=['status'], name='idx_radiology_status'),
                    models.Index(fields=['modality'], name='idx_radiology_modality'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StateTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('session_couch_id', models.CharField(max_length=255)),
                ('from_state', models.CharField(choices=WORKFLOW_STATES, max_length=20)),
                ('to_state', models.CharField(choices=WORKFLOW_STATES, max_length=20)),
                ('reason', models.CharField(blank=True, max_length=255, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('couch_id', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='state_transitions', to='clinical.clinicalsession')),
                ('user', user_fk('state_transitions')),
            ],
            options={
                'verbose_name': 'State Transition',
                'verbose_name_plural': 'State Transitions',
                'db_table': 'state_transitions',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['session_couch_id'], name='idx_transition_session'),
                    models.Index(fields=['to_state'], name='idx_transition_to_state'),
                    models.Index(fields=['created_at'], name='idx_transition_created'),
                ],
            },
        ),
    ]
