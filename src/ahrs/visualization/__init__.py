"""Plotting for attitude filter runs."""
