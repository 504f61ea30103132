"""Discovery, metrics, decisions and report assembly for one QC session."""
