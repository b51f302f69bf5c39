"""Full diagnostic reports: runner, recommendations and health score."""
