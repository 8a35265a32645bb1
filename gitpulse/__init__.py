"""GitPulse: Bitbucket commit and pull request analytics ingestion."""
