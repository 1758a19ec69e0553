import django.db.models.deletion
import django.utils.timezone
import libroware_app.models
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(max_length=254, unique=True, verbose_name='email address')),
                ('Role', models.CharField(choices=[('User', 'User'), ('Librarian', 'Librarian'), ('Admin', 'Admin')], default='User', max_length=20)),
                ('ProfilePicture', models.CharField(blank=True, default='', max_length=500)),
                ('RequiresPasswordChange', models.BooleanField(default=True)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', libroware_app.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Author',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('AuthorName', models.CharField(max_length=255)),
            ],
            options={
                'ordering': ['AuthorName'],
            },
        ),
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('CategoryName', models.CharField(max_length=100, unique=True)),
                ('Description', models.TextField(blank=True, default='')),
            ],
            options={
                'verbose_name_plural': 'categories',
                'ordering': ['CategoryName'],
            },
        ),
        migrations.CreateModel(
            name='Book',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('Title', models.CharField(max_length=255)),
                ('ISBN', models.CharField(max_length=20, unique=True)),
                ('Description', models.TextField(blank=True, default='')),
                ('PublishedAt', models.DateField(blank=True, null=True)),
                ('CoverImage', models.CharField(blank=True, default='', max_length=500)),
                ('PageCount', models.PositiveIntegerField(blank=True, null=True)),
                ('Quantity', models.PositiveIntegerField(default=1)),
                ('Available', models.PositiveIntegerField(default=1)),
                ('Authors', models.ManyToManyField(blank=True, related_name='books', to='libroware_app.author')),
                ('Categories', models.ManyToManyField(blank=True, related_name='books', to='libroware_app.category')),
            ],
            options={
                'ordering': ['Title'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('Available__gte', 0), ('Available__lte', models.F('Quantity'))),
                        name='book_available_within_quantity',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Borrow',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('BookTitle', models.CharField(blank=True, default='', max_length=255)),
                ('BorrowDate', models.DateTimeField(default=django.utils.timezone.now)),
                ('DueDate', models.DateTimeField()),
                ('ReturnDate', models.DateTimeField(blank=True, null=True)),
                ('Status', models.CharField(choices=[('Borrowed', 'Borrowed'), ('Returned', 'Returned'), ('Overdue', 'Overdue')], default='Borrowed', max_length=20)),
                ('Note', models.TextField(blank=True, default='')),
                ('BookID', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='borrows', to='libroware_app.book')),
                ('UserID', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='borrows', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-BorrowDate'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('ReturnDate__isnull', False), ('Status', 'Returned')),
                            models.Q(('ReturnDate__isnull', True), models.Q(('Status', 'Returned'), _negated=True)),
                            _connector='OR',
                        ),
                        name='borrow_returned_iff_return_date',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Review',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('Rating', models.PositiveSmallIntegerField()),
                ('Comment', models.TextField(blank=True, default='')),
                ('CreatedAt', models.DateTimeField(auto_now_add=True)),
                ('BookID', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reviews', to='libroware_app.book')),
                ('UserID', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='reviews', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-CreatedAt'],
                'constraints': [
                    models.UniqueConstraint(fields=('BookID', 'UserID'), name='one_review_per_user_per_book'),
                    models.CheckConstraint(
                        condition=models.Q(('Rating__gte', 1), ('Rating__lte', 5)),
                        name='review_rating_between_1_and_5',
                    ),
                ],
            },
        ),
    ]
