"""Quote document rendering.

Key exports:
    render_quote_pdf()   — Lay out a QuoteDocument as an A4 RTL PDF (bytes)
    layout_items_table() — Pure geometry of the line-item table
    get_quote_pdf()      — Read-through cache in front of the composer
    pdf_filename()       — Safe download filename for a quote number
"""
