"""
Sync incremental ClickUp -> PostgreSQL (tabla compartida con Airbyte).

El importador masivo (Airbyte) es dueño de la fila; este paquete solo agrega
lo que el importador no trae bien: custom fields normalizados, valores
tipados, relaciones y el historial de cambios.

Objetivos de diseño:
- Idempotencia: re-sincronizar sin cambios upstream no altera los mapas.
- No pisar columnas del importador (procedencia; descriptivos vía COALESCE).
- Catálogo de fields estático y explícito en código.
"""
