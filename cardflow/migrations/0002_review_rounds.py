# Review rounds for re-opened applications and medical referrals on rejections

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('cardflow', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='application',
            name='review_round',
            field=models.PositiveSmallIntegerField(default=1),
        ),
        migrations.RemoveConstraint(
            model_name='artifactlineage',
            name='unique_lineage_per_application',
        ),
        migrations.AddField(
            model_name='artifactlineage',
            name='round',
            field=models.PositiveSmallIntegerField(default=1),
        ),
        migrations.AddConstraint(
            model_name='artifactlineage',
            constraint=models.UniqueConstraint(fields=('application', 'key', 'round'), name='unique_lineage_per_application_round'),
        ),
        migrations.AddField(
            model_name='rejectionrecord',
            name='issue_type',
            field=models.CharField(choices=[('document_issue', 'Document Issue'), ('medical_referral', 'Medical Referral')], default='document_issue', max_length=24),
        ),
        migrations.AddField(
            model_name='rejectionrecord',
            name='doctor_name',
            field=models.CharField(blank=True, max_length=255),
        ),
        migrations.AddField(
            model_name='rejectionrecord',
            name='clinic_address',
            field=models.CharField(blank=True, max_length=255),
        ),
    ]
