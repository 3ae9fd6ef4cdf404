# Services package init
"""
CosmoCard Backend — Services Layer
====================================

What:  Business logic between the routes (HTTP) and the registry, Drive,
       Sheets and Gemini.
How:   Each service is a class with a module-level singleton; collaborators
       are constructor arguments so tests can pass in-memory fakes.

Service Inventory:
    - CardService: card stage machine (create → label/info → INCI → photos)
    - AuthService: email one-time codes and JWT issue/verify
    - UserService: user lookup/creation and Users sheet export
    - BatchService: sweep that fills blank AI columns
    - DriveService / SheetsService: Google API collaborators
    - LLMService (abstract) / GeminiService: label and INCI analysis
    - FileService / Downloader: upload validation, PDF text, HTTP downloads
"""
