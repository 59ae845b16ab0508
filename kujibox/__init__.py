"""Fair-draw core for ichiban-kuji style prize pools."""
