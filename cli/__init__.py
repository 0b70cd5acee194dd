"""StoryFrame command-line interface."""
