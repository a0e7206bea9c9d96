# Initial schema for the cardflow app

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


APPLICATION_STATUS_CHOICES = [
    ('draft', 'Draft'),
    ('submitted', 'Submitted'),
    ('document_verification', 'Document Verification'),
    ('documents_need_revision', 'Documents Need Revision'),
    ('payment_validation', 'Payment Validation'),
    ('payment_needs_revision', 'Payment Needs Revision'),
    ('orientation_pending', 'Orientation Pending'),
    ('orientation_scheduled', 'Orientation Scheduled'),
    ('attendance_validation', 'Attendance Validation'),
    ('under_review', 'Under Review'),
    ('administrative_review', 'Under Administrative Review'),
    ('approved', 'Approved'),
    ('rejected', 'Rejected'),
    ('expired', 'Expired'),
]
ARTIFACT_KIND_CHOICES = [('document', 'Document'), ('payment', 'Payment')]
REVIEW_STATUS_CHOICES = [('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected')]
BOOKING_STATUS_CHOICES = [
    ('scheduled', 'Scheduled'),
    ('checked_in', 'Checked In'),
    ('completed', 'Completed'),
    ('cancelled', 'Cancelled'),
    ('missed', 'Missed'),
]
CARD_STATUS_CHOICES = [('active', 'Active'), ('revoked', 'Revoked'), ('expired', 'Expired')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='DocumentType',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.SlugField(max_length=64, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
            ],
        ),
        migrations.CreateModel(
            name='JobCategory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.SlugField(max_length=64, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('card_type', models.CharField(choices=[('yellow', 'Food Handler'), ('green', 'Non-Food Worker'), ('pink', 'Skin-to-Skin Contact')], default='yellow', max_length=16)),
                ('requires_orientation', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('required_documents', models.ManyToManyField(blank=True, related_name='job_categories', to='cardflow.documenttype')),
            ],
            options={
                'verbose_name_plural': 'job categories',
            },
        ),
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[('applicant', 'Applicant'), ('admin', 'Administrator'), ('inspector', 'Inspector'), ('super', 'Super Administrator')], db_index=True, default='applicant', max_length=16)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
                ('managed_categories', models.ManyToManyField(blank=True, related_name='managers', to='cardflow.jobcategory')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Application',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('application_type', models.CharField(choices=[('new', 'New'), ('renew', 'Renew')], default='new', max_length=8)),
                ('status', models.CharField(choices=APPLICATION_STATUS_CHOICES, db_index=True, default='draft', max_length=32)),
                ('orientation_required', models.BooleanField(default=False)),
                ('orientation_completed', models.BooleanField(default=False)),
                ('admin_remarks', models.TextField(blank=True)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('applicant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='applications', to=settings.AUTH_USER_MODEL)),
                ('job_category', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='applications', to='cardflow.jobcategory')),
            ],
        ),
        migrations.CreateModel(
            name='HealthCard',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('registration_number', models.CharField(max_length=32, unique=True)),
                ('issued_date', models.DateField()),
                ('expiry_date', models.DateField()),
                ('status', models.CharField(choices=CARD_STATUS_CHOICES, db_index=True, default='active', max_length=16)),
                ('revoked_at', models.DateTimeField(blank=True, null=True)),
                ('revoked_reason', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='health_cards', to='cardflow.application')),
                ('issued_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='health_cards_issued', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.AddField(
            model_name='application',
            name='previous_card',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='renewals', to='cardflow.healthcard'),
        ),
        migrations.CreateModel(
            name='ApplicationTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(choices=APPLICATION_STATUS_CHOICES, max_length=32)),
                ('to_status', models.CharField(choices=APPLICATION_STATUS_CHOICES, max_length=32)),
                ('timestamp', models.DateTimeField(default=django.utils.timezone.now)),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='application_transitions', to=settings.AUTH_USER_MODEL)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transitions', to='cardflow.application')),
            ],
            options={
                'ordering': ['timestamp', 'id'],
            },
        ),
        migrations.CreateModel(
            name='ArtifactLineage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=ARTIFACT_KIND_CHOICES, max_length=16)),
                ('key', models.CharField(max_length=96)),
                ('max_attempts', models.PositiveSmallIntegerField()),
                ('locked_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lineages', to='cardflow.application')),
                ('document_type', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='lineages', to='cardflow.documenttype')),
            ],
        ),
        migrations.CreateModel(
            name='Artifact',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=ARTIFACT_KIND_CHOICES, max_length=16)),
                ('payload_ref', models.CharField(max_length=255)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('review_status', models.CharField(choices=REVIEW_STATUS_CHOICES, db_index=True, default='pending', max_length=16)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('remarks', models.TextField(blank=True)),
                ('attempt_number', models.PositiveSmallIntegerField()),
                ('submitted_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='artifacts', to='cardflow.application')),
                ('lineage', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='artifacts', to='cardflow.artifactlineage')),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_artifacts', to=settings.AUTH_USER_MODEL)),
                ('submitted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='submitted_artifacts', to=settings.AUTH_USER_MODEL)),
                ('superseded_by', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='supersedes', to='cardflow.artifact')),
            ],
            options={
                'ordering': ['lineage_id', 'attempt_number'],
            },
        ),
        migrations.CreateModel(
            name='RejectionRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('rejected_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('category', models.CharField(max_length=32)),
                ('reason', models.TextField()),
                ('specific_issues', models.JSONField(blank=True, default=list)),
                ('attempt_number', models.PositiveSmallIntegerField()),
                ('was_replaced', models.BooleanField(default=False)),
                ('replaced_at', models.DateTimeField(blank=True, null=True)),
                ('notification_sent', models.BooleanField(default=False)),
                ('artifact', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='rejection', to='cardflow.artifact')),
                ('lineage', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='rejections', to='cardflow.artifactlineage')),
                ('rejected_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='rejections_made', to=settings.AUTH_USER_MODEL)),
                ('replacement', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='replaces_rejection', to='cardflow.artifact')),
            ],
            options={
                'ordering': ['lineage_id', 'attempt_number'],
            },
        ),
        migrations.CreateModel(
            name='OrientationSchedule',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField()),
                ('time', models.TimeField()),
                ('end_time', models.TimeField(blank=True, null=True)),
                ('venue_name', models.CharField(max_length=255)),
                ('venue_address', models.CharField(blank=True, max_length=255)),
                ('venue_capacity', models.PositiveIntegerField(default=0)),
                ('instructor', models.CharField(blank=True, max_length=255)),
                ('total_slots', models.PositiveIntegerField()),
                ('available_slots', models.PositiveIntegerField()),
                ('is_available', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='OrientationBooking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=BOOKING_STATUS_CHOICES, db_index=True, default='scheduled', max_length=16)),
                ('qr_code', models.CharField(blank=True, max_length=128)),
                ('booked_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('checked_in_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('missed_at', models.DateTimeField(blank=True, null=True)),
                ('application', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='orientation_bookings', to='cardflow.application')),
                ('checked_in_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='orientation_check_ins', to=settings.AUTH_USER_MODEL)),
                ('schedule', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bookings', to='cardflow.orientationschedule')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='orientation_bookings', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(max_length=64)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('application', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notifications', to='cardflow.application')),
                ('recipient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='AuditEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(max_length=64)),
                ('object_type', models.CharField(blank=True, max_length=64, null=True)),
                ('object_id', models.BigIntegerField(blank=True, null=True)),
                ('detail', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
        ),
        # Constraints and indexes
        migrations.AddConstraint(
            model_name='application',
            constraint=models.UniqueConstraint(condition=models.Q(('status__in', ('approved', 'rejected', 'expired')), _negated=True), fields=('applicant',), name='one_open_application_per_applicant'),
        ),
        migrations.AddConstraint(
            model_name='application',
            constraint=models.CheckConstraint(condition=models.Q(('orientation_completed', False), ('orientation_required', True), _connector='OR'), name='orientation_completed_requires_orientation'),
        ),
        migrations.AddIndex(
            model_name='application',
            index=models.Index(fields=['status', 'updated_at'], name='application_status_updated_idx'),
        ),
        migrations.AddConstraint(
            model_name='artifactlineage',
            constraint=models.UniqueConstraint(fields=('application', 'key'), name='unique_lineage_per_application'),
        ),
        migrations.AddConstraint(
            model_name='artifact',
            constraint=models.UniqueConstraint(fields=('lineage', 'attempt_number'), name='unique_attempt_per_lineage'),
        ),
        migrations.AddConstraint(
            model_name='artifact',
            constraint=models.UniqueConstraint(condition=models.Q(('review_status__in', ['pending', 'approved'])), fields=('lineage',), name='one_open_artifact_per_lineage'),
        ),
        migrations.AddIndex(
            model_name='rejectionrecord',
            index=models.Index(fields=['lineage', 'attempt_number'], name='rejection_lineage_attempt_idx'),
        ),
        migrations.AddConstraint(
            model_name='orientationschedule',
            constraint=models.CheckConstraint(condition=models.Q(('available_slots__gte', 0), ('available_slots__lte', models.F('total_slots'))), name='available_slots_within_total'),
        ),
        migrations.AddIndex(
            model_name='orientationschedule',
            index=models.Index(fields=['date', 'time'], name='schedule_date_time_idx'),
        ),
        migrations.AddConstraint(
            model_name='orientationbooking',
            constraint=models.UniqueConstraint(condition=models.Q(('status__in', ('scheduled', 'checked_in', 'completed'))), fields=('application',), name='one_active_booking_per_application'),
        ),
        migrations.AddIndex(
            model_name='orientationbooking',
            index=models.Index(fields=['schedule', 'status'], name='booking_schedule_status_idx'),
        ),
        migrations.AddConstraint(
            model_name='healthcard',
            constraint=models.UniqueConstraint(condition=models.Q(('status', 'active')), fields=('application',), name='one_active_card_per_application'),
        ),
        migrations.AddIndex(
            model_name='notification',
            index=models.Index(fields=['recipient', 'created_at'], name='notification_recipient_idx'),
        ),
        migrations.AddIndex(
            model_name='auditevent',
            index=models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
        ),
        migrations.AddIndex(
            model_name='auditevent',
            index=models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ),
    ]
