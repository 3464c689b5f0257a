"""Click subcommands of the switchboard CLI."""
