"""
Main CLI entry point for EngageBrain
"""

import click

from .pipeline import classify_command, ingest_command, process_command
from .queue import queue_group


@click.group()
@click.version_option(version='1.0.0')
def cli():
    """
    EngageBrain - engagement decisions for social comments

    Classify comments, run them through the decision pipeline, and review
    the approval queue.
    """
    pass


# Register commands
cli.add_command(classify_command)
cli.add_command(process_command)
cli.add_command(ingest_command)
cli.add_command(queue_group)


if __name__ == '__main__':
    cli()
