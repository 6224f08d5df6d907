import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='OrphanedBlob',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(max_length=1024, unique=True)),
                ('reason', models.CharField(choices=[('metadata_write_failed', 'Metadata Write Failed'), ('delete_failed', 'Delete Failed'), ('rename_cleanup_failed', 'Rename Cleanup Failed'), ('replaced', 'Replaced'), ('unreferenced', 'Unreferenced')], max_length=32)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Orphaned blob',
                'verbose_name_plural': 'Orphaned blobs',
                'db_table': 'vfs_orphaned_blobs',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='Node',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('workspace_id', models.CharField(blank=True, help_text='Optional partition; NULL is the default scope', max_length=64, null=True)),
                ('name', models.CharField(max_length=255)),
                ('node_type', models.CharField(help_text="'folder' or a content kind such as 'text' or 'image'", max_length=50)),
                ('path', models.CharField(help_text='Canonical path: /folder/sub/file.ext', max_length=1024)),
                ('size_bytes', models.BigIntegerField(default=0)),
                ('mime_type', models.CharField(blank=True, default='', max_length=255)),
                ('content', models.TextField(blank=True, null=True)),
                ('blob_key', models.CharField(blank=True, db_index=True, max_length=1024, null=True)),
                ('blob_url', models.CharField(blank=True, max_length=1024, null=True)),
                ('is_public', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='nodes', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='children', to='vfs.node')),
            ],
            options={
                'verbose_name': 'Node',
                'verbose_name_plural': 'Nodes',
                'db_table': 'vfs_nodes',
                'ordering': ['path'],
                'indexes': [
                    models.Index(fields=['owner', 'parent', 'name'], name='vfs_owner_parent_idx'),
                    models.Index(fields=['owner', '-updated_at'], name='vfs_owner_recent_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('owner', 'workspace_id', 'path'), name='vfs_owner_workspace_path_unique'),
                    models.UniqueConstraint(condition=models.Q(('workspace_id__isnull', True)), fields=('owner', 'path'), name='vfs_owner_default_path_unique'),
                    models.CheckConstraint(condition=models.Q(models.Q(('blob_key__isnull', True), ('content__isnull', True), ('node_type', 'folder')), models.Q(models.Q(('node_type', 'folder'), _negated=True), models.Q(models.Q(('blob_key__isnull', True), ('content__isnull', False)), models.Q(('blob_key__isnull', False), ('content__isnull', True)), _connector='OR')), _connector='OR'), name='vfs_single_content_locator'),
                    models.CheckConstraint(condition=models.Q(('size_bytes__gte', 0)), name='vfs_size_bytes_non_negative'),
                ],
            },
        ),
    ]
