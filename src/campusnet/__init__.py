"""campusnet: messaging, notification and engagement core of a campus social network."""
