"""Communities, posts, reports and their moderation."""
