"""
Management command to seed the database with sample forum data.

Usage: python manage.py seed_forum [--users 10] [--threads 20] [--comments 100] [--clear]

Everything goes through ForumService, so seeded data obeys the same rules
as API traffic (AutoMod, depth, counters, notifications).
"""

import random
from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

from forum.models import Thread, Comment, Upvote, Flag, Subscription, Notification, Tip, ForumProfile
from forum.services import get_forum_service


class Command(BaseCommand):
    help = 'Seed the database with sample forum data'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--threads',
            type=int,
            default=20,
            help='Number of threads to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible data'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing forum data before seeding'
        )

    def handle(self, *args, **options):
        rng = random.Random(options['seed'])
        service = get_forum_service()

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            for model in (Notification, Tip, Flag, Upvote, Subscription, Comment, Thread):
                model.objects.all().delete()
            ForumProfile.objects.update(reputation=0)

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating threads...')
        threads = self._create_threads(service, rng, users, options['threads'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(service, rng, users, threads, options['comments'])

        self.stdout.write('Creating upvotes and subscriptions...')
        self._create_engagement(service, rng, users, threads, comments)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(threads)} threads\n'
            f'  - {len(comments)} comments\n'
            f'  - Upvotes and subscriptions'
        ))

    def _create_users(self, count):
        User = get_user_model()
        users = []
        for i in range(count):
            username = f'member{i+1}'
            user, created = User.objects.get_or_create(
                username=username,
                defaults={'email': f'{username}@example.com'}
            )
            if created:
                user.set_password('password123')
                user.save(update_fields=['password'])
            users.append(user)
        return users

    def _create_threads(self, service, rng, users, count):
        titles = [
            "How should we allocate the community budget?",
            "Proposal: monthly deliberation rooms",
            "Looking for help with my first proposal",
            "Offering help: reviewing translations",
            "Ideas for the neighbourhood assembly",
        ]
        contents = [
            "I'd like to hear different perspectives before we put this to a vote.",
            "Here is a first draft. Feedback welcome, especially on the timeline.",
            "Has anyone been through this process before? Any advice helps.",
        ]
        categories = ['governance', 'help-request', 'help-offer', 'general']

        threads = []
        for i in range(count):
            threads.append(service.create_thread(
                rng.choice(users).id,
                title=f"{rng.choice(titles)} #{i+1}",
                content=rng.choice(contents),
                category=rng.choice(categories),
                tags=rng.sample(['budget', 'help', 'draft', 'meta'], k=2),
            ))
        return threads

    def _create_comments(self, service, rng, users, threads, count):
        comment_texts = [
            "Great point, I agree.",
            "I see it differently, here's why.",
            "Thanks for sharing!",
            "Can you elaborate on the timeline?",
            "This deserves more attention.",
        ]

        comments = []
        if not threads:
            return comments
        for _ in range(count):
            thread = rng.choice(threads)

            # 30% chance of being a reply to an existing comment
            parent_id = None
            existing = [c for c in comments if c.thread_id == thread.id]
            if existing and rng.random() < 0.3:
                parent_id = rng.choice(existing).id

            comments.append(service.create_comment(
                rng.choice(users).id,
                thread.id,
                rng.choice(comment_texts),
                parent_id=parent_id,
            ))
        return comments

    def _create_engagement(self, service, rng, users, threads, comments):
        for thread in threads:
            for user in rng.sample(users, k=len(users) // 2):
                service.toggle_upvote(user.id, thread_id=thread.id)
            if rng.random() < 0.5:
                service.toggle_subscription(rng.choice(users).id, thread.id)

        for comment in comments:
            if rng.random() < 0.3:
                for user in rng.sample(users, k=min(3, len(users))):
                    service.toggle_upvote(user.id, comment_id=comment.id)
