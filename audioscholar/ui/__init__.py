"""Console front-ends for AudioScholar."""
