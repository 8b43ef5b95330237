"""Terminal front end for the pedagogy control loop."""
