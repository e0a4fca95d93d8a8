"""gradectl - Codelab Grader command line tool."""
